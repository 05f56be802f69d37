"""Tests for detail page and archived snapshot extractors."""

from guide_tracker.core.enums import Distinction, PageFormat, Provenance
from guide_tracker.ingestion.adapters import (
    CurrentDetailExtractor,
    InlineScriptExtractor,
    LegacyAExtractor,
    LegacyBExtractor,
    UnknownFormatExtractor,
    apply_context,
    detect_format,
    extract_snapshot,
    get_extractor,
)
from guide_tracker.ingestion.adapters.base import coordinates_from_maps_url, guide_year_from_text
from guide_tracker.ingestion.normalizer import DistinctionPolicy
from guide_tracker.ingestion.session import RequestContext
from guide_tracker.ingestion.wayback import Snapshot

URL = "https://guide.michelin.com/en/tokyo-region/tokyo/restaurant/sushi-kanda"

CURRENT_PAGE = """
<html>
<head>
  <meta property="og:image" content="https://axwwgrkdco.cloudimg.io/sushi-kanda.jpg">
  <script type="application/ld+json">
  {
    "@context": "http://schema.org",
    "@type": "Restaurant",
    "name": "Sushi Kanda",
    "address": {
      "@type": "PostalAddress",
      "streetAddress": "3-6-34 Motoazabu",
      "addressLocality": "Tokyo",
      "postalCode": "106-0046",
      "addressCountry": "Japan"
    },
    "telephone": "+81 3-5772-5888",
    "review": {"@type": "Review", "datePublished": "2024-06-04T10:00"}
  }
  </script>
</head>
<body>
  <h1 class="data-sheet__title">Sushi   Kanda</h1>
  <div class="data-sheet__block">
    <div class="data-sheet__block--text">3-6-34 Motoazabu, Minato-ku, Tokyo, 106-0046, Japan</div>
    <div class="data-sheet__block--text">CAT_P04 · Sushi</div>
  </div>
  <div class="data-sheet__classification">
    <div class="data-sheet__classification-item--content">Three Stars: Exceptional cuisine</div>
    <div class="data-sheet__classification-item--content">MICHELIN Green Star</div>
  </div>
  <div class="data-sheet__description">Omakase counter with eight seats.</div>
  <ul class="restaurant-details__services">
    <li>Air conditioning</li>
    <li>Counter dining</li>
  </ul>
  <a data-event="CTA_tel" href="tel:+81 3-5772-5888">Call</a>
  <a data-event="CTA_website" href="https://sushi-kanda.example">Website</a>
  <iframe src="https://www.google.com/maps/embed/v1/place?key=abc&q=35.6545,139.7289"></iframe>
</body>
</html>
"""

LEGACY_B_PAGE = """
<html>
<body>
  <div class="restaurant-details__heading">
    <h2 class="restaurant-details__heading--title">Chez Paul</h2>
    <ul class="restaurant-details__heading--list">
      <li>11 rue du Major Martin, Lyon, 69001, France</li>
      <li>CAT_P02 • Lyonnaise</li>
    </ul>
  </div>
  <ul class="restaurant-details__classification--list">
    <li>Bib Gourmand: good quality, good value cooking</li>
  </ul>
  <p class="restaurant-details__description--text">A true bouchon.</p>
  <a href="tel:+33 4 78 28 35 83">+33 4 78 28 35 83</a>
  <footer>MICHELIN Guide France 2019</footer>
</body>
</html>
"""

LEGACY_A_PAGE = """
<html>
<head>
  <script type="application/ld+json">{"@type": "Restaurant", "review": {"datePublished": "2017-10-02"}}</script>
</head>
<body>
  <div class="poi_intro">
    <h1 class="poi_intro-display-title">The Ledbury</h1>
    <div class="poi_intro-display-address">127 Ledbury Road, London, W11 2AQ</div>
    <div class="poi_intro-display-cuisines">Modern cuisine</div>
    <div class="poi_intro-display-prices">CAT_P03</div>
    <div class="poi_intro-display-phone">+44 20 7792 9090</div>
  </div>
  <div class="poi_intro-description">Confident cooking.</div>
  <ul class="michelin-poi-distinctions-list"><li>Two MICHELIN Stars</li></ul>
</body>
</html>
"""

INLINE_PAGE = """
<html>
<head>
  <script>
    var dLayer = {};
    dLayer['restaurant_name'] = 'Le Cinq';
    dLayer['distinction'] = '3 star';
    dLayer['price'] = 'CAT_P04';
    dLayer['cuisine'] = 'Creative';
    dLayer['city'] = 'Paris';
    dLayer['published_date'] = '2016-02-01';
  </script>
</head>
<body><h1>Le Cinq</h1></body>
</html>
"""

OBJECT_LITERAL_PAGE = """
<html>
<head><script>dLayer = { 'distinction': '1 star', 'restaurant_name': 'Literal' };</script></head>
<body><h1>Literal</h1></body>
</html>
"""

UNKNOWN_PAGE = """
<html>
<head>
  <title>Some Restaurant | Travel</title>
  <meta name="description" content="An archived page.">
</head>
<body><p>Featured in the MICHELIN Guide 2015, One MICHELIN Star</p></body>
</html>
"""


def _snapshot(timestamp: str = "20190301120000") -> Snapshot:
    original = URL.replace("https://", "http://")
    return Snapshot(
        url=URL,
        timestamp=timestamp,
        original_url=original,
        digest="SHA1ABC",
        archive_url=f"https://web.archive.org/web/{timestamp}id_/{original}",
    )


class TestCurrentDetailExtractor:
    """Tests for the current detail page layout."""

    def test_extracts_all_fields(self) -> None:
        fact = CurrentDetailExtractor().extract(CURRENT_PAGE, URL)

        assert fact.url == URL
        assert fact.name == "Sushi Kanda"
        assert fact.address == "3-6-34 Motoazabu, Minato-ku, Tokyo, 106-0046, Japan"
        assert fact.price == "$$$$"
        assert fact.cuisine == "Sushi"
        assert fact.distinction == Distinction.THREE_STARS
        assert fact.green_star is True
        assert fact.description == "Omakase counter with eight seats."
        assert fact.facilities_and_services == "Air conditioning,Counter dining"
        assert fact.phone_number == "+81357725888"
        assert fact.website_url == "https://sushi-kanda.example"
        assert fact.image_url == "https://axwwgrkdco.cloudimg.io/sushi-kanda.jpg"
        assert (fact.latitude, fact.longitude) == ("35.6545", "139.7289")
        assert fact.year == 2024
        assert fact.location == "Tokyo, Japan"
        assert fact.provenance == Provenance.SCRAPE

    def test_empty_page_yields_partial_fact(self) -> None:
        fact = CurrentDetailExtractor().extract("<html><body></body></html>", URL)

        assert fact.name == ""
        assert fact.distinction is None
        assert fact.year == 0

    def test_invalid_jsonld_is_recorded(self) -> None:
        page = '<h1 class="data-sheet__title">X</h1><script type="application/ld+json">{oops</script>'
        fact = CurrentDetailExtractor().extract(page, URL)

        assert fact.name == "X"
        assert any("invalid JSON-LD" in error for error in fact.extraction_errors)

    def test_jsonld_cuisine_list_with_nulls(self) -> None:
        """Test that non-string cuisine entries in JSON-LD are skipped."""
        page = (
            '<h1 class="data-sheet__title">X</h1><script type="application/ld+json">'
            '{"@type": "Restaurant", "servesCuisine": ["French", null, "Modern", 7]}</script>'
        )
        fact = CurrentDetailExtractor().extract(page, URL)

        assert fact.cuisine == "French, Modern, 7"

    def test_unrecognized_label_follows_policy(self) -> None:
        page = '<div class="data-sheet__classification-item--content">Something new</div>'

        assert CurrentDetailExtractor().extract(page, URL).distinction == Distinction.SELECTED_RESTAURANTS
        strict = CurrentDetailExtractor(DistinctionPolicy(fallback=None))
        assert strict.extract(page, URL).distinction is None


class TestApplyContext:
    """Tests for merging listing and seed context into a fact."""

    def test_listing_context_fills_gaps(self) -> None:
        fact = CurrentDetailExtractor().extract("<html></html>", URL)
        context = RequestContext(
            url=URL,
            location="Tokyo, Japan",
            latitude="35.65",
            longitude="139.72",
            listing_distinction=Distinction.ONE_STAR.value,
        )

        apply_context(fact, context)

        assert fact.location == "Tokyo, Japan"
        assert (fact.latitude, fact.longitude) == ("35.65", "139.72")
        assert fact.distinction == Distinction.ONE_STAR

    def test_page_values_win_over_listing(self) -> None:
        fact = CurrentDetailExtractor().extract(CURRENT_PAGE, URL)
        context = RequestContext(url=URL, location="Elsewhere", listing_distinction=Distinction.ONE_STAR.value)

        apply_context(fact, context)

        assert fact.location == "Tokyo, Japan"
        assert fact.distinction == Distinction.THREE_STARS

    def test_seeded_request_gets_placeholders(self) -> None:
        fact = CurrentDetailExtractor().extract("<html></html>", URL)
        context = RequestContext(url=URL, seed_name="  Seed  Name ", seed_location="Osaka, Japan")

        apply_context(fact, context, seeded=True)

        assert fact.name == "Seed Name"
        assert fact.location == "Osaka, Japan"
        assert (fact.latitude, fact.longitude) == ("0.0", "0.0")
        assert fact.description == "Restaurant information from Michelin Guide"


class TestFormatDetection:
    """Tests for detect_format()."""

    def test_formats(self) -> None:
        assert detect_format(CURRENT_PAGE) == PageFormat.CURRENT
        assert detect_format(LEGACY_B_PAGE) == PageFormat.LEGACY_B
        assert detect_format(LEGACY_A_PAGE) == PageFormat.LEGACY_A
        assert detect_format(INLINE_PAGE) == PageFormat.INLINE_SCRIPT
        assert detect_format(UNKNOWN_PAGE) == PageFormat.UNKNOWN

    def test_object_literal_is_unknown(self) -> None:
        assert detect_format(OBJECT_LITERAL_PAGE) == PageFormat.UNKNOWN

    def test_bytes(self) -> None:
        assert detect_format(CURRENT_PAGE.encode()) == PageFormat.CURRENT

    def test_registry(self) -> None:
        assert isinstance(get_extractor(PageFormat.LEGACY_A), LegacyAExtractor)
        assert isinstance(get_extractor(PageFormat.UNKNOWN), UnknownFormatExtractor)


class TestHistoricalExtractors:
    """Tests for the archived markup generations."""

    def test_legacy_b(self) -> None:
        fact = LegacyBExtractor().extract(LEGACY_B_PAGE, URL)

        assert fact.name == "Chez Paul"
        assert fact.address == "11 rue du Major Martin, Lyon, 69001, France"
        assert fact.price == "$$"
        assert fact.cuisine == "Lyonnaise"
        assert fact.distinction == Distinction.BIB_GOURMAND
        assert fact.description == "A true bouchon."
        assert fact.phone_number == "+33478283583"
        assert fact.year == 2019

    def test_legacy_a(self) -> None:
        fact = LegacyAExtractor().extract(LEGACY_A_PAGE, URL)

        assert fact.name == "The Ledbury"
        assert fact.address == "127 Ledbury Road, London, W11 2AQ"
        assert fact.cuisine == "Modern cuisine"
        assert fact.price == "$$$"
        assert fact.distinction == Distinction.TWO_STARS
        assert fact.phone_number == "+442077929090"
        assert fact.year == 2017

    def test_inline_script(self) -> None:
        fact = InlineScriptExtractor().extract(INLINE_PAGE, URL)

        assert fact.name == "Le Cinq"
        assert fact.distinction == Distinction.THREE_STARS
        assert fact.price == "$$$$"
        assert fact.cuisine == "Creative"
        assert fact.location == "Paris"
        assert fact.year == 2016
        assert fact.extraction_errors == []

    def test_inline_object_literal_has_no_distinction(self) -> None:
        fact = InlineScriptExtractor().extract(OBJECT_LITERAL_PAGE, URL)

        assert fact.distinction is None
        assert fact.name == "Literal"
        assert "distinction not found in inline script" in fact.extraction_errors

    def test_unknown(self) -> None:
        fact = UnknownFormatExtractor().extract(UNKNOWN_PAGE, URL)

        assert fact.name == "Some Restaurant | Travel"
        assert fact.description == "An archived page."
        assert "unrecognized page format" in fact.extraction_errors


class TestExtractSnapshot:
    """Tests for extract_snapshot()."""

    def test_backfill_provenance(self) -> None:
        snapshot = _snapshot()
        fact = extract_snapshot(LEGACY_B_PAGE, snapshot)

        assert fact.url == URL
        assert fact.provenance == Provenance.BACKFILL
        assert fact.wayback_url == snapshot.archive_url
        assert fact.year == 2019
        assert fact.has_award

    def test_unknown_format_yields_no_award(self) -> None:
        fact = extract_snapshot(UNKNOWN_PAGE, _snapshot())

        assert fact.year == 0
        assert fact.distinction is None
        assert not fact.has_award
        assert fact.wayback_url.startswith("https://web.archive.org/web/")


class TestHelpers:
    """Tests for shared extraction helpers."""

    def test_coordinates_from_maps_url(self) -> None:
        assert coordinates_from_maps_url("https://www.google.com/maps/embed?q=48.85,2.35") == ("48.85", "2.35")
        assert coordinates_from_maps_url("https://maps.example/?center=-33.9,151.2") == ("-33.9", "151.2")
        assert coordinates_from_maps_url("https://www.google.com/maps/embed?q=Paris") == ("", "")
        assert coordinates_from_maps_url("") == ("", "")

    def test_guide_year_from_text(self) -> None:
        assert guide_year_from_text("Selected in the MICHELIN Guide 2019") == 2019
        assert guide_year_from_text("Guide MICHELIN France 2012 edition") == 2012
        assert guide_year_from_text("no year here") == 0
