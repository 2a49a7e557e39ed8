"""Tests for locating one executable statement in generated text."""

import pytest

from nlquery.engines.mongodb import MONGODB_DIALECT
from nlquery.engines.postgres import POSTGRES_DIALECT
from nlquery.engines.sqlserver import SQLSERVER_DIALECT
from nlquery.services.query_extraction import clean_response, extract_query


class TestExtractQuery:
    def test_tagged_fence(self):
        text = "Top customers by spend:\n```sql\nSELECT name, total FROM customers\nORDER BY total DESC\n```\nEnjoy."
        assert extract_query(text, POSTGRES_DIALECT) == "SELECT name, total FROM customers\nORDER BY total DESC"

    def test_first_tagged_fence_wins(self):
        text = "```sql\nSELECT 1\n```\nor\n```sql\nSELECT 2\n```"
        assert extract_query(text, POSTGRES_DIALECT) == "SELECT 1"

    def test_dialect_specific_tag(self):
        text = "```tsql\nSELECT TOP 5 * FROM [sales].[Invoices]\n```"
        assert extract_query(text, SQLSERVER_DIALECT) == "SELECT TOP 5 * FROM [sales].[Invoices]"

    def test_tagged_fence_preferred_over_earlier_untagged(self):
        text = "```\nSELECT 'draft'\n```\n```sql\nSELECT 'final'\n```"
        assert extract_query(text, POSTGRES_DIALECT) == "SELECT 'final'"

    def test_untagged_fence_needs_statement_prefix(self):
        assert extract_query("```\nWITH t AS (SELECT 1) SELECT * FROM t\n```", POSTGRES_DIALECT).startswith("WITH t")
        assert extract_query("```\nnot a query\n```", POSTGRES_DIALECT) is None

    def test_fence_with_other_tag_ignored(self):
        assert extract_query("```python\nprint('SELECT 1')\n```", POSTGRES_DIALECT) is None

    def test_bare_statement_ends_at_prose(self):
        text = "SELECT count(*)\nFROM orders\nThe count includes refunds."
        assert extract_query(text, POSTGRES_DIALECT) == "SELECT count(*)\nFROM orders"

    def test_bare_statement_ends_at_blank_line(self):
        text = "Try:\nselect * from users\n\nThen filter."
        assert extract_query(text, POSTGRES_DIALECT) == "select * from users"

    def test_prefix_must_be_a_whole_word(self):
        assert extract_query("SELECTION of products is large.", POSTGRES_DIALECT) is None

    @pytest.mark.parametrize("text", ["", "I cannot answer that from this schema.", "Hello!"])
    def test_no_statement(self, text):
        assert extract_query(text, POSTGRES_DIALECT) is None

    def test_mongodb_json_command(self):
        text = 'Paid orders:\n```json\n{"find": "orders", "filter": {"status": "paid"}}\n```'
        assert extract_query(text, MONGODB_DIALECT) == '{"find": "orders", "filter": {"status": "paid"}}'

    def test_mongodb_bare_command(self):
        assert extract_query('{"count": "orders"}', MONGODB_DIALECT) == '{"count": "orders"}'


class TestCleanResponse:
    def test_removes_query_blocks_and_orphan_headers(self):
        text = "Top five customers.\n\n**Query:**\n\n```sql\nSELECT 1\n```\n\n\n\nMostly repeat buyers."

        assert clean_response(text, POSTGRES_DIALECT) == "Top five customers.\n\nMostly repeat buyers."

    def test_removes_json_blocks(self):
        assert clean_response('Result:\n```json\n{"a": 1}\n```') == "Result:"

    def test_keeps_unrelated_code(self):
        text = "Run this:\n```bash\nls\n```"
        assert clean_response(text) == text

    def test_dialect_tags_removed(self):
        assert clean_response("Here:\n```tsql\nSELECT 1\n```", SQLSERVER_DIALECT) == "Here:"

    def test_untagged_statement_block_removed(self):
        text = "Order counts:\n\n```\nSELECT COUNT(*) FROM orders\n```\n\nAbout forty."

        assert extract_query(text, POSTGRES_DIALECT) == "SELECT COUNT(*) FROM orders"
        assert clean_response(text, POSTGRES_DIALECT) == "Order counts:\n\nAbout forty."

    def test_untagged_prose_block_kept(self):
        text = "Example output:\n```\nname | total\n```"
        assert clean_response(text, POSTGRES_DIALECT) == text
