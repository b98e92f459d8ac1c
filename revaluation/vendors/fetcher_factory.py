from typing import Dict, List, Type

from sqlalchemy.orm import Session

from revaluation.database.models import CollectionItem, MarketItemExternalId
from revaluation.pricing.resolver import GameId, normalize_game
from revaluation.vendors.base import BaseFetcher
from revaluation.vendors.pokemontcg import PokemonTcgFetcher
from revaluation.vendors.scryfall import ScryfallFetcher
from revaluation.vendors.ygoprodeck import YgoprodeckFetcher


class FetcherFactory:
    """Factory for creating vendor fetchers by source name.

    The CLI sync command and the resolver's live fallback both go through
    here, so adding a vendor means registering one class.
    """

    FETCHERS: Dict[str, Type[BaseFetcher]] = {
        "ygoprodeck": YgoprodeckFetcher,
        "pokemontcg": PokemonTcgFetcher,
        "scryfall": ScryfallFetcher,
    }

    # The fetcher that covers each game's primary price source
    GAME_FETCHERS: Dict[GameId, str] = {
        GameId.YUGIOH: "ygoprodeck",
        GameId.POKEMON: "pokemontcg",
        GameId.MTG: "scryfall",
    }

    # Market catalog source names that a fetcher's ids are recorded under
    MARKET_SOURCES: Dict[str, tuple] = {
        "ygoprodeck": ("ygoprodeck",),
        "pokemontcg": ("tcgplayer", "cardmarket"),
        "scryfall": ("scryfall",),
    }

    @classmethod
    def sources(cls) -> List[str]:
        return sorted(cls.FETCHERS)

    @classmethod
    def create_fetcher(cls, source: str, **kwargs) -> BaseFetcher:
        """Create the fetcher registered under ``source``.

        Raises:
            ValueError: if no fetcher is registered for ``source``
        """
        if source not in cls.FETCHERS:
            raise ValueError(
                f"Unknown price source '{source}'. Available: {', '.join(cls.sources())}"
            )
        return cls.FETCHERS[source](**kwargs)

    @classmethod
    def live_fetchers(cls, **kwargs) -> Dict[GameId, BaseFetcher]:
        """One fetcher per game, for LivePriceResolver's live fallback."""
        return {game: cls.create_fetcher(source, **kwargs) for game, source in cls.GAME_FETCHERS.items()}

    @classmethod
    def tracked_ids(cls, db: Session, source: str) -> List[str]:
        """Card ids worth syncing for ``source``.

        Union of ids held in any collection for the source's game and ids
        registered for it in the market catalog.
        """
        if source not in cls.FETCHERS:
            raise ValueError(f"Unknown price source '{source}'")

        games = {game for game, name in cls.GAME_FETCHERS.items() if name == source}
        ids = set()
        for label, card_id in db.query(CollectionItem.game, CollectionItem.card_id).distinct():
            if card_id and normalize_game(label) in games:
                ids.add(card_id.strip())

        external = (
            db.query(MarketItemExternalId.external_id)
            .filter(MarketItemExternalId.source.in_(cls.MARKET_SOURCES[source]))
            .distinct()
        )
        ids.update(row[0] for row in external if row[0])
        return sorted(ids)
