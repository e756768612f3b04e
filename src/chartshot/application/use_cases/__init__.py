from .chart_screenshot import PAIR_TIMEFRAMES, ChartScreenshotUseCase

__all__ = ["PAIR_TIMEFRAMES", "ChartScreenshotUseCase"]
