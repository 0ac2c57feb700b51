"""UI module namespace for the flip viewer."""

__all__ = ["FlipWindow"]


def __getattr__(name: str):
    if name == "FlipWindow":
        from .main_window import FlipWindow  # noqa: WPS433 (late import to avoid cycles)

        return FlipWindow
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
