import unittest

from newsharvest.ingestion.article_types import WeightedTerm
from newsharvest.ingestion.query_builder import batch_terms, build_queries, locale_clause, or_group, render_term


class TestRenderTerm(unittest.TestCase):
    def test_single_ascii_token_is_bare(self):
        self.assertEqual(render_term("  GDP "), "gdp")

    def test_phrases_are_quoted(self):
        self.assertEqual(render_term("Stock  Market"), '"stock market"')
        self.assertEqual(render_term("ações"), '"ações"')
        self.assertEqual(render_term("covid-19"), '"covid-19"')

    def test_embedded_quotes_are_dropped(self):
        self.assertEqual(render_term('"inflation"'), "inflation")
        self.assertIsNone(render_term('  " " '))


class TestBatching(unittest.TestCase):
    def test_terms_split_when_or_group_exceeds_ceiling(self):
        terms = [WeightedTerm("stock market"), WeightedTerm("GDP"), WeightedTerm("ações")]
        batches = build_queries(terms, max_term_chars=30)
        self.assertGreater(len(batches), 1)
        for b in batches:
            self.assertLessEqual(len(b.keywords), 30)
        flat = [t for b in batches for t in b.terms]
        self.assertEqual(flat, ['"stock market"', "gdp", '"ações"'])

    def test_single_term_is_not_parenthesized(self):
        self.assertEqual(or_group(["gdp"]), "gdp")
        self.assertEqual(or_group(["gdp", "inflation"]), "(gdp OR inflation)")

    def test_oversized_term_gets_its_own_batch(self):
        long_term = "x" * 40
        self.assertEqual(batch_terms(["a", long_term, "b"], 20), [["a"], [long_term], ["b"]])

    def test_heavier_terms_come_first(self):
        terms = [WeightedTerm("light", 0.1), WeightedTerm("heavy", 5.0), WeightedTerm("mid", 1.0)]
        batches = build_queries(terms)
        self.assertEqual(batches[0].keywords, "(heavy OR mid OR light)")

    def test_duplicate_terms_collapse(self):
        batches = build_queries([WeightedTerm("GDP"), WeightedTerm("gdp ")])
        self.assertEqual(len(batches), 1)
        self.assertEqual(batches[0].keywords, "gdp")

    def test_zero_terms_emit_default_query(self):
        batches = build_queries([])
        self.assertEqual(len(batches), 1)
        self.assertEqual(batches[0].query, "news")


class TestLocaleClause(unittest.TestCase):
    def test_languages_are_or_grouped_and_space_joined(self):
        batches = build_queries([WeightedTerm("gdp")], languages=["pt", "en"])
        query = batches[0].query
        self.assertIn("(sourcelang:portuguese OR sourcelang:english)", query)
        self.assertEqual(query, "gdp (sourcelang:portuguese OR sourcelang:english)")
        self.assertNotIn(" AND ", query)

    def test_single_region_is_bare(self):
        self.assertEqual(locale_clause(["pt"], ["br"]), "sourcelang:portuguese sourcecountry:BR")

    def test_every_batch_carries_the_filters(self):
        terms = [WeightedTerm("stock market"), WeightedTerm("GDP"), WeightedTerm("ações")]
        batches = build_queries(terms, ["en"], ["US", "BR"], max_term_chars=30)
        for b in batches:
            self.assertTrue(b.query.endswith("sourcelang:english (sourcecountry:US OR sourcecountry:BR)"))


if __name__ == "__main__":
    unittest.main()
