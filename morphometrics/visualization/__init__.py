from morphometrics.visualization import plots

__all__ = ["plots"]
