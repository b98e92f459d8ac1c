import unittest

import fixtures  # noqa: F401  (sets up sys.path)

from revaluation.pricing.normalizer import (
    BUCKET_PRIORITY,
    CardmarketPayload,
    Confidence,
    EbayPayload,
    PriceBucket,
    PsaGradedPayload,
    ScryfallPayload,
    TcgplayerPayload,
    YgoprodeckPayload,
    fields,
    first_price,
    normalize,
    normalize_bucket,
    normalize_variant_type,
)


class TestFirstPrice(unittest.TestCase):
    """Tests for the shared priority-resolution function."""

    def test_full_bucket_prefers_market(self):
        bucket = PriceBucket(low_price=1, mid_price=2, high_price=3, market_price=4)
        self.assertEqual(normalize_bucket(bucket), ("market_price", 400))

    def test_low_and_high_only_picks_low(self):
        bucket = PriceBucket(low_price=1, high_price=3)
        self.assertEqual(normalize_bucket(bucket), ("low_price", 100))

    def test_zero_market_price_falls_through(self):
        bucket = PriceBucket(market_price=0, mid_price="2.25")
        self.assertEqual(normalize_bucket(bucket), ("mid_price", 225))

    def test_nothing_usable(self):
        self.assertIsNone(normalize_bucket(PriceBucket(market_price=0, low_price="-1")))
        self.assertIsNone(normalize_bucket(None))

    def test_reads_mappings_and_objects(self):
        self.assertEqual(first_price({"b": "1.10"}, fields("a", "b")), ("b", 110))
        self.assertEqual(first_price(PriceBucket(mid_price=5), BUCKET_PRIORITY), ("mid_price", 500))

    def test_bucket_from_short_keys(self):
        bucket = PriceBucket.from_mapping({"low": 1, "market": 4})
        self.assertEqual(bucket.market_price, 4)
        self.assertEqual(bucket.low_price, 1)


class TestVariantNormalization(unittest.TestCase):

    def test_aliases(self):
        self.assertEqual(normalize_variant_type("Holo"), "holofoil")
        self.assertEqual(normalize_variant_type("reverse"), "reverse_holofoil")
        self.assertEqual(normalize_variant_type("reverseHolo"), "reverse_holofoil")
        self.assertEqual(normalize_variant_type("firstEdition"), "first_edition")
        self.assertEqual(normalize_variant_type("w_promo"), "promo")

    def test_blank_and_unknown_are_normal(self):
        self.assertEqual(normalize_variant_type(None), "normal")
        self.assertEqual(normalize_variant_type(""), "normal")
        self.assertEqual(normalize_variant_type("shadowless"), "normal")


class TestTcgplayerNormalizer(unittest.TestCase):

    def setUp(self):
        self.payload = TcgplayerPayload(
            buckets={
                "normal": PriceBucket(market_price="1.50", low_price="1.00", high_price="3.00"),
                "holofoil": PriceBucket(market_price="12.00"),
                "reverse_holofoil": PriceBucket(mid_price="4.00"),
                "first_edition_normal": PriceBucket(low_price="40.00"),
            },
            market_price="2.00",
        )

    def test_requested_bucket(self):
        price = normalize(self.payload, "holofoil")
        self.assertEqual(price.amount_cents, 1200)
        self.assertEqual(price.field, "holofoil.market_price")
        self.assertEqual(price.confidence, Confidence.A)
        self.assertEqual(price.currency, "USD")

    def test_bucket_low_and_high_carried(self):
        price = normalize(self.payload, "normal")
        self.assertEqual(price.low_cents, 100)
        self.assertEqual(price.high_cents, 300)

    def test_reverse_holo_underscore_naming(self):
        self.assertEqual(normalize(self.payload, "reverse_holofoil").amount_cents, 400)

    def test_first_edition_falls_back_to_normal_printing(self):
        price = normalize(self.payload, "first_edition")
        self.assertEqual(price.field, "first_edition_normal.low_price")
        self.assertEqual(price.amount_cents, 4000)

    def test_promo_reads_holofoil_bucket(self):
        self.assertEqual(normalize(self.payload, "promo").amount_cents, 1200)

    def test_missing_bucket_uses_generic_chain(self):
        payload = TcgplayerPayload(buckets={"holofoil": PriceBucket(market_price=0)}, mid_price="3.10")
        price = normalize(payload, "holofoil")
        self.assertEqual(price.amount_cents, 310)
        self.assertEqual(price.field, "mid_price")
        self.assertEqual(price.confidence, Confidence.B)

    def test_no_price_anywhere(self):
        self.assertIsNone(normalize(TcgplayerPayload(), "normal"))


class TestOtherNormalizers(unittest.TestCase):

    def test_ygoprodeck_first_field(self):
        price = normalize(YgoprodeckPayload(tcgplayer_price="0.00", cardmarket_price="0.20", ebay_price="0.99"))
        self.assertEqual(price.field, "cardmarket_price")
        self.assertEqual(price.currency, "EUR")
        self.assertEqual(price.amount_cents, 20)

    def test_ygoprodeck_usd_field(self):
        price = normalize(YgoprodeckPayload(tcgplayer_price="1.25"))
        self.assertEqual(price.currency, "USD")
        self.assertEqual(price.amount_cents, 125)

    def test_cardmarket_is_eur(self):
        price = normalize(CardmarketPayload(trend_price="3.50", avg7="3.00"))
        self.assertEqual(price.currency, "EUR")
        self.assertEqual(price.field, "trend_price")
        self.assertEqual(price.amount_cents, 350)

    def test_cardmarket_reverse_holo(self):
        payload = CardmarketPayload(trend_price="3.00", reverse_holo_trend="5.00")
        self.assertEqual(normalize(payload, "reverse_holofoil").amount_cents, 500)
        self.assertEqual(normalize(payload, "normal").amount_cents, 300)

    def test_scryfall_finishes(self):
        payload = ScryfallPayload(usd="1.00", usd_foil="4.00")
        self.assertEqual(normalize(payload, "normal").amount_cents, 100)
        foil = normalize(payload, "holofoil")
        self.assertEqual(foil.amount_cents, 400)
        self.assertEqual(foil.confidence, Confidence.A)

    def test_scryfall_fallback_finish_is_grade_b(self):
        price = normalize(ScryfallPayload(usd_etched="7.00"), "normal")
        self.assertEqual(price.field, "usd_etched")
        self.assertEqual(price.confidence, Confidence.B)

    def test_scryfall_eur_last_resort(self):
        price = normalize(ScryfallPayload(eur="2.00"), "normal")
        self.assertEqual(price.currency, "EUR")

    def test_ebay_median(self):
        price = normalize(EbayPayload(median_price="9.00", average_price="10.00", sample_size=12))
        self.assertEqual(price.amount_cents, 900)
        self.assertEqual(price.sales_count, 12)
        self.assertEqual(price.confidence, Confidence.C)

    def test_psa_grades(self):
        gem = PsaGradedPayload(grade="GEM MT 10", psa_10_price="500", graded_price="200", loose_price="20")
        self.assertEqual(normalize(gem).amount_cents, 50000)
        nine = PsaGradedPayload(grade="MINT 9", psa_10_price="500", graded_price="200")
        self.assertEqual(normalize(nine).field, "graded_price")
        raw = PsaGradedPayload(grade="9", loose_price="20")
        self.assertEqual(normalize(raw).confidence, Confidence.C)

    def test_unknown_payload_raises(self):
        with self.assertRaises(TypeError):
            normalize({"market_price": 1})


if __name__ == "__main__":
    unittest.main()
