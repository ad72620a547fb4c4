"""Terminal presentation of backend availability."""

from heartline.ui.banner import BannerController

__all__ = ["BannerController"]
