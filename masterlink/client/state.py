from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from masterlink.client.media import extract_extension, swap_extension
from masterlink.contracts import IntensityEntry

StatusListener = Callable[[str], None]


@dataclass
class PlaybackState:
    """What the player shows for the current file: sources, selection and status."""

    status: str = ""
    progress: int = 0
    job_id: str | None = None
    storage_key: str | None = None
    title: str = ""

    original_preview: str | None = None  # local file being mastered
    original_from_api: str | None = None
    mastered_files: list[str] = field(default_factory=list)
    selected_mastered_index: int = 0
    is_original: bool = True

    intensities: list[IntensityEntry] = field(default_factory=list)
    selected_intensity_level: int | None = None
    requested_levels: list[int] = field(default_factory=list)
    download_format: str | None = None

    listeners: list[StatusListener] = field(default_factory=list, repr=False)

    def set_status(self, text: str) -> None:
        if text == self.status:
            return
        self.status = text
        logger.debug(f"status: {text}")
        for listener in self.listeners:
            listener(text)

    @property
    def selected_mastered_url(self) -> str | None:
        if not self.mastered_files:
            return None
        index = min(max(self.selected_mastered_index, 0), len(self.mastered_files) - 1)
        return self.mastered_files[index]

    @property
    def playback_url(self) -> str | None:
        if self.is_original:
            return self.original_from_api or self.original_preview
        return self.selected_mastered_url

    @property
    def download_url(self) -> str | None:
        url = self.selected_mastered_url
        if url is None:
            return None
        target = (self.download_format or extract_extension(url) or "mp3").lower()
        return swap_extension(url, target)

    def reset(self) -> None:
        """Back to a blank player; listeners stay subscribed."""
        fresh = PlaybackState(listeners=self.listeners)
        self.__dict__.update(fresh.__dict__)
