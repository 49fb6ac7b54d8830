"""
watchtogether.services.video
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

视频地址解析器 —— 识别平台类型并提取播放所需的 ID。

支持:
  - YouTube：``youtu.be/<id>``、``watch?v=<id>``、``embed/<id>``、``shorts/<id>`` 等
  - Google Drive：``/file/d/<id>``、``open?id=<id>``、``uc?id=<id>``
  - 直链视频：路径以常见媒体扩展名结尾的 http(s) 地址

解析在 ``createRoom`` / ``changeVideo`` 修改房间之前同步执行，失败抛出 ``ValidationError``。
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import ParseResult, parse_qs, urlparse

from watchtogether.core.errors import ValidationError
from watchtogether.schemas.events import VideoData, VideoKind

_YOUTUBE_HOSTS: frozenset[str] = frozenset({
    "youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com",
    "youtube-nocookie.com", "www.youtube-nocookie.com", "youtu.be", "www.youtu.be",
})
_YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
# /embed/<id>、/v/<id>、/shorts/<id>、/live/<id>
_YOUTUBE_PATH_RE = re.compile(r"^/(?:embed|v|shorts|live)/([^/?#&]+)")

_DRIVE_HOSTS: frozenset[str] = frozenset({"drive.google.com", "docs.google.com"})
_DRIVE_FILE_RE = re.compile(r"/file/d/([A-Za-z0-9_-]+)")
_DRIVE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,}$")

_MEDIA_EXTENSIONS: tuple[str, ...] = (
    ".mp4", ".webm", ".ogg", ".ogv", ".mov", ".m4v", ".m3u8", ".mpd",
)


@dataclass(frozen=True)
class VideoRef:
    """解析后的视频引用。

    Attributes:
        source_url: 用户提交的原始地址。
        kind: 平台类型。
        resolved_id: 平台内视频 ID；直链视频为原地址本身。
    """

    source_url: str
    kind: VideoKind
    resolved_id: str

    @property
    def embed_url(self) -> str:
        """前端播放器加载的地址。"""
        if self.kind == "youtube":
            return f"https://www.youtube.com/embed/{self.resolved_id}"
        if self.kind == "drive":
            return f"https://drive.google.com/file/d/{self.resolved_id}/preview"
        return self.source_url

    def to_data(self) -> VideoData:
        return VideoData(
            source_url=self.source_url,
            kind=self.kind,
            resolved_id=self.resolved_id,
            embed_url=self.embed_url,
        )


def _youtube_id(parsed: ParseResult) -> str | None:
    host = (parsed.hostname or "").lower()
    if host not in _YOUTUBE_HOSTS:
        return None

    candidate: str | None = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    else:
        query_ids = parse_qs(parsed.query).get("v")
        if query_ids:
            candidate = query_ids[0]
        else:
            match = _YOUTUBE_PATH_RE.match(parsed.path)
            if match:
                candidate = match.group(1)

    if candidate and _YOUTUBE_ID_RE.match(candidate):
        return candidate
    return None


def _drive_id(parsed: ParseResult) -> str | None:
    host = (parsed.hostname or "").lower()
    if host not in _DRIVE_HOSTS:
        return None

    match = _DRIVE_FILE_RE.search(parsed.path)
    if match:
        return match.group(1)

    # open?id=<id> / uc?id=<id>
    query_ids = parse_qs(parsed.query).get("id")
    if query_ids and _DRIVE_ID_RE.match(query_ids[0]):
        return query_ids[0]
    return None


def resolve_video(reference: str) -> VideoRef:
    """把用户提交的视频地址解析为 ``VideoRef``。

    Args:
        reference: 原始视频地址。

    Returns:
        解析结果。

    Raises:
        ValidationError: 地址格式非法，或不属于任何支持的平台。
    """
    url = (reference or "").strip()
    if not url:
        raise ValidationError("视频地址不能为空")

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        # 例如未闭合的 IPv6 方括号
        raise ValidationError("视频地址格式非法") from e
    if parsed.scheme not in ("http", "https") or not hostname:
        raise ValidationError("视频地址必须是 http(s) URL")

    youtube_id = _youtube_id(parsed)
    if youtube_id:
        return VideoRef(source_url=url, kind="youtube", resolved_id=youtube_id)

    drive_id = _drive_id(parsed)
    if drive_id:
        return VideoRef(source_url=url, kind="drive", resolved_id=drive_id)

    if parsed.path.lower().endswith(_MEDIA_EXTENSIONS):
        return VideoRef(source_url=url, kind="generic", resolved_id=url)

    raise ValidationError("仅支持 YouTube、Google Drive 或视频直链地址")
