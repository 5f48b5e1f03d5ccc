# session_engine/logic/context_extractor.py
"""
Context extraction for the session engine.
Pulls a short label (file, URL, command, document, channel) out of an
event's window title and URL so sessions can say what was being worked on.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from session_engine.models import ActivityEvent, ExtractedContext

log = logging.getLogger(__name__)

MAX_CONTEXTS_PER_SESSION = 10
MAX_COMMAND_LENGTH = 50
MAX_GENERIC_TITLE_LENGTH = 100
URL_PART_LIMIT = 50
QA_DETAIL_LIMIT = 80

BROWSER_NAMES = ("Firefox", "Chrome", "Safari", "Edge", "Brave", "Arc")

PLACEHOLDER_TITLES = frozenset(["welcome", "settings"])
GENERIC_TITLES = frozenset(["untitled", "new document", "new file", "document", "window", ""])

RELATED_DOMAIN_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("github.com", "githubusercontent.com", "github.io", "gist.github.com"),
    ("google.com", "googleapis.com", "googleusercontent.com"),
    ("stackoverflow.com", "stackexchange.com", "askubuntu.com", "serverfault.com"),
    ("amazon.com", "aws.amazon.com", "console.aws.amazon.com"),
    ("microsoft.com", "azure.com", "live.com", "office.com"),
)

_BROWSER_APP = re.compile(r"\b(?:" + "|".join(BROWSER_NAMES) + r")\b", re.IGNORECASE)
_BROWSER_TITLE_SUFFIX = re.compile(
    r"\s*[-–—]\s*(?:Mozilla\s+|Google\s+|Microsoft\s+)?(?:" + "|".join(BROWSER_NAMES) + r").*$", re.IGNORECASE
)
_TITLE_PIPE_SUFFIX = re.compile(r"\s*\|.*$")
_GITHUB_REPO = re.compile(r"^/([^/]+/[^/]+)")


def _truncate(text: str, limit: int = URL_PART_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text


# --- URL helpers ---
def split_url(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """Returns (domain without 'www.', path or '') for an absolute URL."""
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    domain = host[4:] if host.startswith("www.") else host
    path = "" if parts.path in ("", "/") else parts.path
    return domain, path


def extract_domain(url: Optional[str]) -> Optional[str]:
    parsed = split_url(url)
    return parsed[0] if parsed else None


def are_urls_related(url1: Optional[str], url2: Optional[str]) -> bool:
    """Same domain, or both domains fall in one of the related service ecosystems."""
    domain1 = extract_domain(url1)
    domain2 = extract_domain(url2)
    if not domain1 or not domain2:
        return False
    if domain1 == domain2:
        return True
    for group in RELATED_DOMAIN_GROUPS:
        d1_in_group = any(domain1 in g or g in domain1 for g in group)
        d2_in_group = any(domain2 in g or g in domain2 for g in group)
        if d1_in_group and d2_in_group:
            return True
    return False


def is_browser(app_name: str) -> bool:
    return bool(_BROWSER_APP.search(app_name or ""))


# --- Title parsers ---
def _project_file(project: str, file: str) -> Optional[str]:
    file = file.strip()
    if file.lower() in PLACEHOLDER_TITLES:
        return None
    return f"{project.strip()}/{file}"


def _file_only(file: str) -> Optional[str]:
    file = file.strip()
    if file.lower() in PLACEHOLDER_TITLES:
        return None
    return file


def _suffixed_editor(suffix: str) -> Callable[[str], Optional[str]]:
    """Parser for 'file - folder - <Editor>' and 'file - <Editor>' titles."""
    full = re.compile(rf"^(.+?)\s+[-–—]\s+(.+?)\s+[-–—]\s+{suffix}$", re.IGNORECASE)
    simple = re.compile(rf"^(.+?)\s+[-–—]\s+{suffix}$", re.IGNORECASE)

    def parse(title: str) -> Optional[str]:
        match = full.match(title)
        if match:
            return _project_file(match.group(2), match.group(1))
        match = simple.match(title)
        if match:
            return _file_only(match.group(1))
        return None

    return parse


def _separated_pair(pattern: str) -> Callable[[str], Optional[str]]:
    """Parser for 'file <sep> project' titles."""
    regex = re.compile(pattern)

    def parse(title: str) -> Optional[str]:
        match = regex.match(title)
        if match:
            return _project_file(match.group(2), match.group(1))
        return None

    return parse


def _sublime_title(title: str) -> Optional[str]:
    match = re.match(r"^(.+?)\s+[•-]\s+(.+?)$", title)
    if match:
        return _project_file(match.group(2), match.group(1))
    return _file_only(re.sub(r"\s*\(.*\)$", "", title))


def _vim_title(title: str) -> Optional[str]:
    match = re.search(r"(?:nvim|vim)\s+(.+)", title, re.IGNORECASE)
    return match.group(1).strip() if match else None


_SHELL_ONLY_TITLE = re.compile(r"^(bash|zsh|fish|sh|Terminal|iTerm2?)$", re.IGNORECASE)
_TERMINAL_PATH = re.compile(r"[~/][^\s:]+")
_TERMINAL_COMMAND = re.compile(
    r"\b(npm|yarn|bun|pnpm|cargo|go|python|node|make|docker|git|kubectl|ssh)\s+.*",
    re.IGNORECASE,
)


def _terminal_title(title: str) -> Optional[str]:
    if _SHELL_ONLY_TITLE.match(title.strip()):
        return None
    path = _TERMINAL_PATH.search(title)
    if path:
        return path.group(0)
    command = _TERMINAL_COMMAND.search(title)
    if command:
        return command.group(0)[:MAX_COMMAND_LENGTH]
    return None


def _figma_title(title: str) -> Optional[str]:
    match = re.match(r"^(.+?)\s+[–-]\s+Figma$", title, re.IGNORECASE)
    return match.group(1).strip() if match else None


def _sketch_title(title: str) -> Optional[str]:
    match = re.match(r"^(.+?)(?:\.sketch)?$", title, re.IGNORECASE)
    return match.group(1).strip() if match else None


def _adobe_title(title: str) -> Optional[str]:
    # "poster.psd @ 66.7% (Layer 1, RGB/8)"
    match = re.match(r"^(.+?)(?:\s+@|\s+\*|$)", title)
    if match:
        filename = match.group(1).strip()
        if filename and not filename.startswith("Adobe"):
            return filename
    return None


def _slack_title(title: str) -> Optional[str]:
    channel = re.match(r"^(#.+?)\s+-", title)
    if channel:
        return channel.group(1)
    dm = re.match(r"^(.+?)\s+-\s+.+?\s+-\s+Slack$", title)
    if dm:
        return f"DM: {dm.group(1)}"
    return None


def _discord_title(title: str) -> Optional[str]:
    match = re.match(r"^(.+?)\s+-\s+(#.+?)$", title)
    if match:
        return f"{match.group(1)}/{match.group(2)}"
    return None if "Discord" in title else title


def _teams_title(title: str) -> Optional[str]:
    match = re.match(r"^(.+?)\s+\|", title)
    return match.group(1).strip() if match else None


@dataclass(frozen=True)
class TitleExtractor:
    """One entry of the dispatch table: which apps it handles and how it reads their titles."""
    family: str
    app_pattern: re.Pattern
    kind: str
    parse: Callable[[str], Optional[str]]

    def matches(self, app_name: str) -> bool:
        return bool(self.app_pattern.search(app_name))

    def extract(self, title: str) -> Optional[ExtractedContext]:
        value = self.parse(title)
        if not value:
            return None
        return ExtractedContext(kind=self.kind, value=value)


def _entry(family: str, apps: str, kind: str, parse: Callable[[str], Optional[str]]) -> TitleExtractor:
    return TitleExtractor(family=family, app_pattern=re.compile(apps, re.IGNORECASE), kind=kind, parse=parse)


# Tried in order; the first extractor that matches the app AND yields a value wins.
DEFAULT_EXTRACTORS: Tuple[TitleExtractor, ...] = (
    # IDE / editor
    _entry("ide", r"Visual Studio Code|Code|VSCode", "file", _suffixed_editor("Visual Studio Code")),
    _entry("ide", r"Cursor", "file", _suffixed_editor("Cursor")),
    _entry("ide", r"Xcode", "file", _separated_pair(r"^(.+?)\s+[—–-]\s+(.+?)$")),
    _entry("ide", r"IntelliJ|WebStorm|PyCharm|PhpStorm|Rider|GoLand|CLion|RubyMine", "file",
           _separated_pair(r"^(.+?)\s+[–-]\s+(.+?)(?:\s+\[.+\])?$")),
    _entry("ide", r"Sublime Text", "file", _sublime_title),
    _entry("ide", r"nvim|vim", "file", _vim_title),
    # Terminal
    _entry("terminal", r"iTerm|Terminal|Ghostty|Alacritty|Hyper|Warp|Kitty", "command", _terminal_title),
    # Design
    _entry("design", r"Figma", "document", _figma_title),
    _entry("design", r"Sketch", "document", _sketch_title),
    _entry("design", r"Photoshop|Illustrator|InDesign|XD|Premiere|After Effects", "document", _adobe_title),
    # Communication
    _entry("communication", r"Slack", "other", _slack_title),
    _entry("communication", r"Discord", "other", _discord_title),
    _entry("communication", r"Teams", "other", _teams_title),
)


class ContextExtractor:
    """Maps (app, title, url, document path) to an ExtractedContext, or None."""

    def __init__(self, extractors: Sequence[TitleExtractor] = DEFAULT_EXTRACTORS):
        self.extractors = tuple(extractors)

    def extract(
        self,
        app_name: str,
        window_title: Optional[str],
        url: Optional[str] = None,
        document_path: Optional[str] = None,
    ) -> Optional[ExtractedContext]:
        if document_path and document_path.strip():
            return ExtractedContext(kind="file", value=document_path)

        if not window_title or not window_title.strip():
            return None

        app_name = app_name or ""
        handled_by: Optional[str] = None
        for extractor in self.extractors:
            if not extractor.matches(app_name):
                continue
            handled_by = extractor.family
            context = extractor.extract(window_title)
            if context:
                return context

        # A recognized app whose title yielded nothing (placeholder tab, bare shell) has no context.
        if handled_by:
            log.debug(f"No {handled_by} context in title for {app_name}")
            return None

        if is_browser(app_name):
            return self.extract_browser_context(window_title, url)

        if window_title.lower().strip() not in GENERIC_TITLES and len(window_title) < MAX_GENERIC_TITLE_LENGTH:
            return ExtractedContext(kind="other", value=window_title)

        return None

    def extract_event(self, event: ActivityEvent) -> Optional[ExtractedContext]:
        return self.extract(event.app_name, event.window_title, event.url, event.document_path)

    @staticmethod
    def extract_browser_context(title: str, url: Optional[str]) -> Optional[ExtractedContext]:
        parsed = split_url(url)
        if not parsed:
            return None
        domain, path = parsed

        clean_title = _BROWSER_TITLE_SUFFIX.sub("", title)
        clean_title = _TITLE_PIPE_SUFFIX.sub("", clean_title).strip()

        if "github.com" in domain:
            repo = _GITHUB_REPO.match(path)
            if repo:
                return ExtractedContext(kind="url", value=f"github.com{repo.group(0)}", detail=clean_title)

        if "stackoverflow.com" in domain or "stackexchange.com" in domain:
            return ExtractedContext(kind="url", value=domain, detail=clean_title[:QA_DETAIL_LIMIT])

        return ExtractedContext(
            kind="url",
            value=domain + _truncate(path),
            detail=_truncate(clean_title),
        )


def deduplicate_contexts(contexts: Iterable[ExtractedContext], limit: int = MAX_CONTEXTS_PER_SESSION) -> List[str]:
    """Case-insensitive dedupe in order of first occurrence, capped at `limit`."""
    seen = set()
    result: List[str] = []
    for ctx in contexts:
        normalized = ctx.value.lower().strip()
        if not ctx.value or normalized in seen:
            continue
        seen.add(normalized)
        result.append(ctx.value)
        if len(result) >= limit:
            break
    return result
