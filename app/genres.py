"""Genre definitions and curated search shortcuts for the browsing feed."""

from __future__ import annotations

from dataclasses import dataclass


ALL_GENRES = "All"


@dataclass(frozen=True)
class GenreDefinition:
    """Maps a display genre name onto its TMDB genre identifier."""

    tmdb_id: int
    name: str


GENRES: tuple[GenreDefinition, ...] = (
    GenreDefinition(28, "Action"),
    GenreDefinition(12, "Adventure"),
    GenreDefinition(16, "Animation"),
    GenreDefinition(35, "Comedy"),
    GenreDefinition(80, "Crime"),
    GenreDefinition(99, "Documentary"),
    GenreDefinition(18, "Drama"),
    GenreDefinition(10751, "Family"),
    GenreDefinition(14, "Fantasy"),
    GenreDefinition(36, "History"),
    GenreDefinition(27, "Horror"),
    GenreDefinition(10402, "Music"),
    GenreDefinition(9648, "Mystery"),
    GenreDefinition(10749, "Romance"),
    GenreDefinition(878, "Sci-Fi"),
    GenreDefinition(53, "Thriller"),
    GenreDefinition(10752, "War"),
    GenreDefinition(37, "Western"),
)

# Genres offered as top-level feed filters, in display order.
FEED_CATEGORIES: tuple[str, ...] = (
    ALL_GENRES,
    "Action",
    "Comedy",
    "Horror",
    "Sci-Fi",
    "Drama",
    "Fantasy",
    "Mystery",
    "Animation",
    "Thriller",
)

# Curated sub-categories that commit a search query instead of a genre filter.
CATEGORY_SHORTCUTS: tuple[str, ...] = (
    "South Hindi Dubbed",
    "Bollywood",
    "Dual Audio",
    "Hindi Dubbed",
    "Hollywood",
    "Web Series",
)

_GENRE_IDS = {definition.name.casefold(): definition.tmdb_id for definition in GENRES}


def genre_id_for(name: str | None) -> int | None:
    """Return the TMDB genre id for a display name, ``None`` for "All" or unknown."""

    if not name:
        return None
    return _GENRE_IDS.get(name.strip().casefold())


def is_all_genres(name: str | None) -> bool:
    return not name or name.strip().casefold() == ALL_GENRES.casefold()
