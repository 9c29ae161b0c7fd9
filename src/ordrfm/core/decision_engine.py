"""
Organization mode decision engine

Rules are an explicit ordered list. Each rule inspects the album context
and returns either a definitive mode (plus any extra placeholder values)
or "no match"; the first definitive answer wins. Every evaluation is
appended to the decision's rule trace.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config_manager import OrganizationConfig
from .constants import (
    LABEL_DOMINANCE_FACTOR, SMALL_ARTIST_MAX_RELEASES, PROLIFIC_LABEL_MIN_RELEASES,
    MAX_PATTERN_INPUT_LENGTH,
)
from .exceptions import DecisionAmbiguityError, ConfigurationError
from .models import AlbumDirectory, MetadataRecord, OrganizationDecision, OrganizationMode, QualityClass
from .path_template import PathTemplate
from .state_store import StateStore
from ..utils.naming import catalog_prefix, normalize_text, sanitize_component

NOT_REMIXERS = {'original', 'extended', 'radio', 'club', 'vocal', 'instrumental', 'album',
                'single', 'the', 'short', 'long', 'main'}


def choose_label_mode(label_count: int, artist_count: int, min_label_releases: int) -> bool:
    """
    Label-vs-artist rule.

    Label mode needs at least min_label_releases for the label, and either
    a label that clearly dominates the artist or a small artist on a
    prolific label.
    """
    if label_count < min_label_releases:
        return False
    if label_count > LABEL_DOMINANCE_FACTOR * artist_count:
        return True
    return artist_count <= SMALL_ARTIST_MAX_RELEASES and label_count >= PROLIFIC_LABEL_MIN_RELEASES


def _keyword_pattern(keywords: List[str]) -> re.Pattern:
    """Whole-word match; digits may follow a keyword (WHITE001)"""
    alternatives = sorted((re.escape(k).replace(r'\ ', r'\s*') for k in keywords if k),
                          key=len, reverse=True)
    return re.compile(r'(?<![a-z])(?:' + '|'.join(alternatives) + r')(?![a-z])', re.IGNORECASE)


@dataclass
class DecisionContext:
    """Everything a rule may look at"""
    album: AlbumDirectory
    quality: QualityClass
    metadata: MetadataRecord
    trace: List[str] = field(default_factory=list)


@dataclass
class RuleResult:
    mode: Optional[OrganizationMode]
    reason: str
    values: Dict[str, str] = field(default_factory=dict)


Rule = Tuple[str, Callable[[DecisionContext], RuleResult]]


class DecisionEngine:
    """
    Chooses an organization mode and renders the destination path.

    Rule order for hybrid mode:
    1. series, then compilation
    2. underground
    3. remix
    4. label vs artist (StateStore release counts)
    5. artist (default)
    """

    def __init__(self, config: OrganizationConfig, state_store: StateStore):
        self.config = config
        self.state_store = state_store
        self.logger = logging.getLogger(__name__)

        self.destination_root = os.path.abspath(config.destination_dir)
        self.unsorted_root = os.path.abspath(config.unsorted_dir)

        self.templates = {}
        for mode in (OrganizationMode.ARTIST, OrganizationMode.LABEL, OrganizationMode.SERIES,
                     OrganizationMode.REMIX, OrganizationMode.UNDERGROUND, OrganizationMode.COMPILATION):
            if mode.value not in config.templates:
                raise ConfigurationError(f"No path template for mode '{mode.value}'")
            self.templates[mode] = PathTemplate(config.templates[mode.value])

        self._va_aliases = {normalize_text(a) for a in config.various_artists_aliases}
        self._placeholders = {a.strip().lower() for a in config.placeholder_artists}
        self._underground = _keyword_pattern(config.underground_keywords)
        self._remix = _keyword_pattern(config.remix_keywords)
        self._compilation = _keyword_pattern(config.compilation_keywords)
        self._series_patterns = [re.compile(p, re.IGNORECASE) for p in config.series_patterns]

        keywords = '|'.join(sorted((re.escape(k) for k in config.remix_keywords), key=len, reverse=True))
        self._remixer_patterns = [
            re.compile(r'[\(\[]\s*([^\(\)\[\]]{1,80}?)\s+(?:' + keywords + r')\s*[\)\]]\s*$', re.IGNORECASE),
            re.compile(r'\s-\s+([^\-\(\)\[\]]{1,80}?)\s+(?:' + keywords + r')\s*$', re.IGNORECASE),
        ]

        self._aliases = {}
        for primary, aliases in config.artist_aliases.items():
            for alias in [primary] + list(aliases):
                self._aliases[normalize_text(alias)] = primary

    # ===== RULE CHAINS =====

    def rules_for(self, mode: Optional[str] = None) -> List[Rule]:
        """Ordered rules for a requested organization mode"""
        mode = mode or self.config.organization_mode

        if not self.config.enable_electronic:
            return [('compilation', self._rule_compilation)]
        if mode == 'artist':
            return [('compilation', self._rule_compilation)]
        if mode == 'label':
            return [('compilation', self._rule_compilation), ('label', self._rule_forced_label)]
        if mode == 'series':
            return [('series', self._rule_series), ('compilation', self._rule_compilation)]
        if mode == 'hybrid':
            return [
                ('series', self._rule_series),
                ('compilation', self._rule_compilation),
                ('underground', self._rule_underground),
                ('remix', self._rule_remix),
                ('label', self._rule_label_vs_artist),
            ]
        raise ConfigurationError(f"Unknown organization mode: {mode}")

    def decide(self, album: AlbumDirectory, quality: QualityClass, metadata: MetadataRecord,
               mode: Optional[str] = None) -> OrganizationDecision:
        """
        Choose a mode and render the destination.

        Raises:
            DecisionAmbiguityError: the chosen template has an unresolved
                required placeholder; the exception carries the rule trace
        """
        metadata = self._resolve_aliases(metadata)
        ctx = DecisionContext(album=album, quality=quality, metadata=metadata)

        chosen = RuleResult(OrganizationMode.ARTIST, "default")
        for name, rule in self.rules_for(mode):
            result = rule(ctx)
            if result.mode is None:
                ctx.trace.append(f"{name}: no match ({result.reason})")
                continue
            ctx.trace.append(f"{name}: {result.mode.value} ({result.reason})")
            chosen = result
            break
        else:
            ctx.trace.append("artist: artist (default)")

        try:
            relative = self.templates[chosen.mode].render(self._values(ctx, chosen))
        except DecisionAmbiguityError as e:
            ctx.trace.append(f"render: failed ({e})")
            e.rule_trace = list(ctx.trace)
            raise

        destination = os.path.join(self.destination_root, *self._with_disc(relative, album).split('/'))
        self.logger.debug(f"Decision for {album.path}: {chosen.mode.value} -> {destination}")

        return OrganizationDecision(
            mode=chosen.mode,
            destination_path=destination,
            rule_trace=ctx.trace,
            metadata=metadata,
            quality=quality,
        )

    def unsorted_decision(self, album: AlbumDirectory, reason: str,
                          trace: Optional[List[str]] = None,
                          quality: Optional[QualityClass] = None,
                          metadata: Optional[MetadataRecord] = None) -> OrganizationDecision:
        """Destination inside the unsorted bucket, keeping the directory name"""
        name = os.path.basename(os.path.normpath(album.path))
        if album.disc_number is not None:
            name = os.path.basename(os.path.dirname(os.path.normpath(album.path)))
        name = self._with_disc(sanitize_component(name) or "Unknown", album)

        return OrganizationDecision(
            mode=OrganizationMode.UNSORTED,
            destination_path=os.path.join(self.unsorted_root, name),
            rule_trace=list(trace or []) + [f"unsorted: {reason}"],
            metadata=metadata,
            quality=quality,
        )

    # ===== RULES =====

    def _rule_series(self, ctx: DecisionContext) -> RuleResult:
        md = ctx.metadata
        if md.series:
            return RuleResult(OrganizationMode.SERIES, f"catalog series '{md.series}'",
                              {'series': md.series})

        catalog = (md.catalog_number or '')[:MAX_PATTERN_INPUT_LENGTH]
        if catalog:
            for pattern in self._series_patterns:
                match = pattern.search(catalog)
                if match:
                    name = match.groupdict().get('series') or catalog_prefix(catalog)
                    return RuleResult(OrganizationMode.SERIES, f"catalog {catalog} matches {pattern.pattern}",
                                      {'series': name or catalog})

        return RuleResult(None, "no series information")

    def _rule_compilation(self, ctx: DecisionContext) -> RuleResult:
        md = ctx.metadata
        if md.artist and normalize_text(md.artist) in self._va_aliases:
            return RuleResult(OrganizationMode.COMPILATION, f"artist '{md.artist}' is a various-artists alias")

        title = (md.album_title or '')[:MAX_PATTERN_INPUT_LENGTH]
        if md.distinct_track_artists > 1 and self._compilation.search(title):
            return RuleResult(OrganizationMode.COMPILATION,
                              f"compilation keyword in title with {md.distinct_track_artists} track artists")

        return RuleResult(None, "not a compilation")

    def _rule_underground(self, ctx: DecisionContext) -> RuleResult:
        md = ctx.metadata
        if self._is_placeholder_artist(md.artist):
            return RuleResult(OrganizationMode.UNDERGROUND, "missing or placeholder artist")

        for field_name, value in (('catalog', md.catalog_number), ('label', md.label),
                                  ('title', md.album_title)):
            if not value:
                continue
            match = self._underground.search(value[:MAX_PATTERN_INPUT_LENGTH])
            if match:
                return RuleResult(OrganizationMode.UNDERGROUND,
                                  f"underground keyword '{match.group(0)}' in {field_name}")

        return RuleResult(None, "artist and catalog look regular")

    def _rule_remix(self, ctx: DecisionContext) -> RuleResult:
        md = ctx.metadata
        title = (md.album_title or '')[:MAX_PATTERN_INPUT_LENGTH]
        keyword = self._remix.search(title)

        artist_key = normalize_text(md.artist)
        remixers = [r for r in md.remix_artists if r and normalize_text(r) != artist_key]

        if not keyword and not remixers:
            return RuleResult(None, "no remix keyword or remixer")

        remixer = self.extract_remix_artist(title)
        if remixer is None and remixers:
            remixer = remixers[0]

        if remixer is None:
            ctx.trace.append(f"remix: keyword '{keyword.group(0)}' but no remixer found, falling back")
            return RuleResult(OrganizationMode.ARTIST, "remix keyword but remixer extraction failed")

        return RuleResult(OrganizationMode.REMIX, f"remixer '{remixer}'", {'remix_artist': remixer})

    def _rule_label_vs_artist(self, ctx: DecisionContext) -> RuleResult:
        md = ctx.metadata
        if not md.label:
            return RuleResult(None, "no label metadata")

        label_count = self.state_store.get_release_count('label', md.label)
        artist_count = self.state_store.get_release_count('artist', md.artist)
        counts = f"label={label_count} artist={artist_count} min={self.config.min_label_releases}"

        if choose_label_mode(label_count, artist_count, self.config.min_label_releases):
            return RuleResult(OrganizationMode.LABEL, counts)
        return RuleResult(None, counts)

    def _rule_forced_label(self, ctx: DecisionContext) -> RuleResult:
        if ctx.metadata.label:
            return RuleResult(OrganizationMode.LABEL, "label mode requested")
        return RuleResult(None, "no label metadata")

    # ===== HELPERS =====

    def extract_remix_artist(self, title: Optional[str]) -> Optional[str]:
        """Remixer name from a trailing '(Name Remix)' or '- Name Remix' in the title"""
        if not title:
            return None
        text = title[:MAX_PATTERN_INPUT_LENGTH].strip()
        for pattern in self._remixer_patterns:
            match = pattern.search(text)
            if match:
                name = match.group(1).strip(" -'\"")
                if name and name.lower() not in NOT_REMIXERS:
                    return name
        return None

    def _is_placeholder_artist(self, artist: Optional[str]) -> bool:
        return not artist or artist.strip().lower() in self._placeholders

    def _resolve_aliases(self, metadata: MetadataRecord) -> MetadataRecord:
        if not self._aliases or not metadata.artist:
            return metadata
        primary = self._aliases.get(normalize_text(metadata.artist))
        if primary and primary != metadata.artist:
            self.logger.debug(f"Artist alias '{metadata.artist}' resolved to '{primary}'")
            resolved = MetadataRecord.from_dict(metadata.to_dict())
            resolved.artist = primary
            return resolved
        return metadata

    def _values(self, ctx: DecisionContext, result: RuleResult) -> Dict[str, Optional[str]]:
        md = ctx.metadata
        title = md.album_title
        if title and len(title) > self.config.max_title_length:
            title = title[:self.config.max_title_length].rstrip()

        artist = None if self._is_placeholder_artist(md.artist) else md.artist

        values = {
            'quality': ctx.quality.value,
            'artist': artist,
            'title': title,
            'year': str(md.year) if md.year else None,
            'label': md.label,
            'catalog': md.catalog_number,
            'genre': md.genre,
            'series': md.series,
            'remix_artist': None,
            'underground_group': md.catalog_number or (str(md.year) if md.year else "Unknown"),
        }
        values.update(result.values)
        return values

    @staticmethod
    def _with_disc(relative: str, album: AlbumDirectory) -> str:
        if album.disc_number is None:
            return relative
        return f"{relative} (Disc {album.disc_number})"
