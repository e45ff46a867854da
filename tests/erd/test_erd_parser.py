"""
Tests for the Mermaid erDiagram parser.

Covers:
- Entity blocks, attribute lines and constraints
- Relationship lines and cardinality normalization
- Recoverable problems reported as warnings (never raised)
- Fatal input (empty text, nothing parseable)

Run with:
    pytest tests/erd/test_erd_parser.py -v
"""

import pytest

from fixtures import (
    CHOICE_DIAGRAM,
    DUPLICATE_COLUMN_DIAGRAM,
    IMPLICIT_ENTITY_DIAGRAM,
    LOOKUP_DIAGRAM,
    MALFORMED_DIAGRAM,
    MANY_TO_MANY_DIAGRAM,
    SYSTEM_COLUMNS_DIAGRAM,
)

from erd_deployer.formats.cdm import CDMMatcher
from erd_deployer.formats.erd import (
    AttributeType,
    Cardinality,
    ERDParser,
    ParseError,
    Severity,
)


def warning_types(result):
    return [w.type for w in result.warnings]


# =============================================================================
# Entities and Attributes
# =============================================================================

@pytest.mark.unit
class TestEntityParsing:
    """Entity blocks and attribute lines."""

    def test_simple_diagram(self, parser, simple_diagram):
        result = parser.parse(simple_diagram)

        assert result.entity_names == ["Customer", "Order"]
        assert result.is_valid
        assert result.validation.status == "success"
        assert result.warnings == ()
        assert result.corrected_diagram is None

    def test_attribute_types_and_keys(self, parser, simple_diagram):
        result = parser.parse(simple_diagram)
        customer = result.get_entity("Customer")
        order = result.get_entity("Order")

        customer_id = customer.get_attribute("customer_id")
        assert customer_id.is_primary_key
        assert customer_id.is_required
        assert customer.get_attribute("email").type == AttributeType.EMAIL
        assert customer.get_attribute("full_name").type == AttributeType.STRING

        assert order.get_attribute("total").type == AttributeType.MONEY
        assert order.get_attribute("order_date").type == AttributeType.DATETIME
        assert order.get_attribute("customer_id").is_foreign_key
        assert not order.get_attribute("customer_id").is_primary_key

    def test_constraints_and_description(self, parser):
        result = parser.parse(
            'erDiagram\n'
            '    Contact {\n'
            '        string contact_id PK\n'
            '        string email UK NOT NULL "Contact email"\n'
            '        int visits DEFAULT 1\n'
            '    }\n'
        )
        contact = result.get_entity("Contact")

        email = contact.get_attribute("email")
        assert email.is_unique
        assert email.is_required
        assert email.description == "Contact email"
        assert contact.get_attribute("visits").default_value == "1"
        assert contact.get_attribute("visits").is_nullable

    def test_quoted_default(self, parser):
        result = parser.parse(
            'erDiagram\n'
            '    Ticket {\n'
            '        string ticket_id PK\n'
            '        string stage DEFAULT "Open"\n'
            '        string queue NOT NULL DEFAULT "Front desk" "Routing queue"\n'
            '    }\n'
        )
        ticket = result.get_entity("Ticket")

        stage = ticket.get_attribute("stage")
        assert stage.default_value == "Open"
        assert stage.description == ""

        queue = ticket.get_attribute("queue")
        assert queue.default_value == "Front desk"
        assert queue.description == "Routing queue"
        assert queue.is_required
        assert "unparsed_line" not in warning_types(result)

    def test_display_names_are_generated(self, parser):
        result = parser.parse("erDiagram\n    order_line {\n        string line_id PK\n    }\n")
        entity = result.entities[0]

        assert entity.display_name == "Order Line"
        assert entity.attributes[0].display_name == "Line Id"

    def test_choice_columns(self, parser):
        result = parser.parse(CHOICE_DIAGRAM)
        order = result.get_entity("Order")

        priority = order.get_attribute("priority")
        assert priority.type == AttributeType.CHOICE
        assert priority.choice_options == ("Low", "Normal", "High")

        state = order.get_attribute("order_state")
        assert state.type == AttributeType.CHOICE
        assert state.choice_set == "OrderStatus"
        assert state.choice_options == ()

    def test_lookup_columns(self, parser):
        result = parser.parse(LOOKUP_DIAGRAM)
        task = result.get_entity("Task")

        project = task.get_attribute("project")
        assert project.is_lookup
        assert project.lookup_target == "Project"

    def test_bare_entity_name_line(self, parser):
        result = parser.parse("erDiagram\n    Tag\n")

        assert result.entity_names == ["Tag"]
        assert "empty_entity" in warning_types(result)
        assert "missing_primary_key" in warning_types(result)

    def test_entity_declared_twice_is_merged(self, parser):
        result = parser.parse(
            "erDiagram\n"
            "    Customer {\n        string customer_id PK\n    }\n"
            "    Customer {\n        string email\n    }\n"
        )

        assert result.entity_names == ["Customer"]
        assert [a.name for a in result.entities[0].attributes] == ["customer_id", "email"]
        assert "duplicate_entity" in warning_types(result)

    def test_comments_and_blank_lines_are_ignored(self, parser):
        result = parser.parse(
            "%% leading comment\n\nerDiagram\n\n    %% inside\n"
            "    Customer {\n        string customer_id PK\n    }\n"
        )

        assert result.entity_names == ["Customer"]
        assert result.warnings == ()


# =============================================================================
# Relationships
# =============================================================================

@pytest.mark.unit
class TestRelationshipParsing:
    """Relationship lines and cardinality markers."""

    def test_one_to_many(self, parser, simple_diagram):
        result = parser.parse(simple_diagram)

        assert len(result.relationships) == 1
        rel = result.relationships[0]
        assert rel.from_entity == "Customer"
        assert rel.to_entity == "Order"
        assert rel.cardinality == Cardinality.ONE_TO_MANY
        assert rel.name == "places"

    def test_quoted_label_is_unquoted(self, parser):
        result = parser.parse('erDiagram\n    Product ||--o{ OrderLine : "ordered in"\n')

        assert result.relationships[0].name == "ordered in"

    def test_missing_label_defaults_to_endpoints(self, parser):
        result = parser.parse("erDiagram\n    Customer ||--o{ Order\n")

        assert result.relationships[0].name == "Customer_Order"

    def test_many_to_one_is_reversed(self, parser):
        result = parser.parse("erDiagram\n    Order }o--|| Customer : places\n")
        rel = result.relationships[0]

        assert rel.from_entity == "Customer"
        assert rel.to_entity == "Order"
        assert rel.cardinality == Cardinality.ONE_TO_MANY

    def test_many_to_many(self, parser):
        result = parser.parse(MANY_TO_MANY_DIAGRAM)

        assert result.relationships[0].cardinality == Cardinality.MANY_TO_MANY
        assert "many_to_many" in warning_types(result)

    @pytest.mark.parametrize("marker,expected", [
        ("||--o{", (Cardinality.ONE_TO_MANY, False)),
        ("|o--|{", (Cardinality.ONE_TO_MANY, False)),
        ("||..o{", (Cardinality.ONE_TO_MANY, False)),
        ("||--||", (Cardinality.ONE_TO_ONE, False)),
        ("}o--o{", (Cardinality.MANY_TO_MANY, False)),
        ("}o--||", (Cardinality.ONE_TO_MANY, True)),
        ("|{--}|", (None, False)),
        ("||", (None, False)),
    ])
    def test_parse_cardinality(self, marker, expected):
        assert ERDParser.parse_cardinality(marker) == expected

    def test_unrecognized_marker_is_treated_as_one_to_many(self, parser):
        result = parser.parse("erDiagram\n    Customer |{--}| Order : places\n")

        assert result.relationships[0].cardinality == Cardinality.ONE_TO_MANY
        issue = next(w for w in result.warnings if w.type == "ambiguous_cardinality")
        assert issue.severity == Severity.WARNING
        assert issue.auto_fixable

    def test_duplicate_relationship_is_dropped(self, parser):
        result = parser.parse(
            "erDiagram\n"
            "    Customer ||--o{ Order : places\n"
            "    Customer ||--o{ Order : places\n"
        )

        assert len(result.relationships) == 1
        assert "duplicate_relationship" in warning_types(result)

    def test_same_pair_with_different_labels_is_kept(self, parser):
        result = parser.parse(
            "erDiagram\n"
            "    Customer ||--o{ Order : places\n"
            "    Customer ||--o{ Order : approves\n"
        )

        assert [r.name for r in result.relationships] == ["places", "approves"]

    def test_undeclared_endpoint_is_declared_implicitly(self, parser):
        result = parser.parse(IMPLICIT_ENTITY_DIAGRAM)

        assert result.entity_names == ["Customer", "Order"]
        assert result.get_entity("Order").implicit
        assert not result.get_entity("Customer").implicit
        implicit = next(w for w in result.warnings if w.type == "implicit_entity")
        assert implicit.severity == Severity.INFO
        assert implicit.entity == "Order"


# =============================================================================
# Recoverable Problems
# =============================================================================

@pytest.mark.unit
class TestParserWarnings:
    """Problems that are reported instead of raised."""

    def test_duplicate_column_blocks_deployment(self, parser):
        result = parser.parse(DUPLICATE_COLUMN_DIAGRAM)

        assert not result.is_valid
        assert result.validation.status == "error"
        assert [e.type for e in result.errors] == ["duplicate_columns"]
        assert len(result.get_entity("Customer").attributes) == 2

    def test_system_columns(self, parser):
        result = parser.parse(SYSTEM_COLUMNS_DIAGRAM)
        by_type = {w.type: w for w in result.warnings}

        assert by_type["system_column_ignored"].severity == Severity.INFO
        assert by_type["system_attribute_conflict"].severity == Severity.ERROR
        assert by_type["status_column_ignored"].severity == Severity.INFO
        assert not result.get_entity("Invoice").has_attribute("createdon")

    def test_unknown_type_falls_back_to_string(self, parser):
        result = parser.parse("erDiagram\n    Site {\n        string site_id PK\n        geography location\n    }\n")
        location = result.get_entity("Site").get_attribute("location")

        assert location.type == AttributeType.STRING
        assert location.original_type == "geography"
        assert "unknown_type" in warning_types(result)
        assert result.is_valid

    def test_malformed_lines_are_reported_with_line_numbers(self, parser):
        result = parser.parse(MALFORMED_DIAGRAM)
        unparsed = [w for w in result.warnings if w.type == "unparsed_line"]

        assert [w.line_number for w in unparsed] == [2, 5]
        assert "unclosed_entity" in warning_types(result)
        assert result.entity_names == ["Customer"]
        assert result.is_valid

    def test_multiple_primary_keys_are_an_error(self, parser):
        result = parser.parse(
            "erDiagram\n    Line {\n        string order_id PK\n        int line_no PK\n    }\n"
        )

        assert [e.type for e in result.errors] == ["multiple_primary_keys"]
        assert result.corrected_diagram is not None

    def test_canonical_detection_is_informational(self, simple_diagram):
        result = ERDParser(matcher=CDMMatcher()).parse(simple_diagram)
        detected = [w for w in result.warnings if w.type == "cdm_entity_detected"]

        assert [w.entity for w in detected] == ["Customer", "Order"]
        assert all(w.severity == Severity.INFO for w in detected)
        assert result.is_valid

    def test_corrections_can_be_disabled(self):
        result = ERDParser(generate_corrections=False).parse(IMPLICIT_ENTITY_DIAGRAM)

        assert result.corrected_diagram is None

    def test_to_dict(self, parser):
        data = parser.parse(DUPLICATE_COLUMN_DIAGRAM).to_dict()

        assert data["validation"]["isValid"] is False
        assert data["validation"]["errors"] == 1
        assert data["warnings"][0]["type"] == "duplicate_columns"
        assert data["warnings"][0]["line"] == 5


# =============================================================================
# Fatal Input
# =============================================================================

@pytest.mark.unit
class TestParseErrors:
    """Input that cannot be tokenized at all."""

    @pytest.mark.parametrize("text", ["", "   \n\t\n"])
    def test_empty_text(self, parser, text):
        with pytest.raises(ParseError, match="empty"):
            parser.parse(text)

    def test_none(self, parser):
        with pytest.raises(ParseError):
            parser.parse(None)

    def test_nothing_parseable(self, parser):
        with pytest.raises(ParseError, match="No entities or relationships"):
            parser.parse("erDiagram\n%% only a comment\n")

    def test_parser_is_reusable(self, parser, simple_diagram):
        first = parser.parse(simple_diagram)
        second = parser.parse(simple_diagram)

        assert first == second
