"""
Tests for ERDValidator and ERDCorrector.

The validator runs on already-parsed models, so most tests build
entities directly; corrector tests go through the parser because the
corrector works on a ParseResult.
"""

import pytest

from fixtures import MANY_TO_MANY_DIAGRAM, MISSING_PK_DIAGRAM, SYSTEM_COLUMNS_DIAGRAM

from erd_deployer.formats.cdm import CDMMatcher
from erd_deployer.formats.erd import (
    Attribute,
    AttributeType,
    Cardinality,
    Entity,
    ERDCorrector,
    ERDParser,
    ERDValidator,
    ParseResult,
    Relationship,
    Severity,
)


def entity(name, *attributes, implicit=False):
    return Entity(name=name, attributes=tuple(attributes), implicit=implicit)


def pk(name="id"):
    return Attribute(name=name, is_primary_key=True, is_required=True)


def issues_by_type(issues):
    return {issue.type: issue for issue in issues}


# =============================================================================
# Entity Checks
# =============================================================================

@pytest.mark.unit
class TestEntityValidation:
    """Per-entity checks."""

    def test_clean_entity_has_no_issues(self):
        issues = ERDValidator().validate([entity("Customer", pk("customer_id"))], [])

        assert issues == []

    def test_missing_primary_key(self):
        issues = issues_by_type(ERDValidator().validate([entity("Widget", Attribute("size"))], []))

        issue = issues["missing_primary_key"]
        assert issue.severity == Severity.WARNING
        assert issue.auto_fixable
        assert issue.entity == "Widget"

    def test_empty_entity(self):
        issues = issues_by_type(ERDValidator().validate([entity("Tag")], []))

        assert issues["empty_entity"].severity == Severity.WARNING

    def test_implicit_entity_is_not_reported_empty(self):
        issues = issues_by_type(ERDValidator().validate([entity("Tag", implicit=True)], []))

        assert "empty_entity" not in issues
        assert "missing_primary_key" in issues

    def test_multiple_primary_keys(self):
        issues = ERDValidator().validate([entity("Line", pk("a"), pk("b"))], [])

        assert [i.type for i in issues] == ["multiple_primary_keys"]
        assert issues[0].severity == Severity.ERROR

    @pytest.mark.parametrize("column", ["statecode", "StatusCode", "ownerid"])
    def test_platform_column_conflict(self, column):
        issues = ERDValidator().validate([entity("Invoice", pk(), Attribute(column))], [])

        assert [i.type for i in issues] == ["system_attribute_conflict"]
        assert issues[0].severity == Severity.ERROR

    def test_status_column(self):
        issues = ERDValidator().validate([entity("Invoice", pk(), Attribute("status"))], [])

        assert [(i.type, i.severity) for i in issues] == [("status_column_ignored", Severity.INFO)]

    def test_name_column_that_is_not_the_key(self):
        issues = ERDValidator().validate([entity("Invoice", pk(), Attribute("name"))], [])

        assert [(i.type, i.severity) for i in issues] == [("naming_conflict", Severity.WARNING)]

    def test_foreign_key_naming(self):
        fk = Attribute("customer", is_foreign_key=True)
        issues = ERDValidator().validate([entity("Order", pk(), fk)], [])

        assert [(i.type, i.severity) for i in issues] == [("foreign_key_naming", Severity.INFO)]


# =============================================================================
# Relationship Checks
# =============================================================================

@pytest.mark.unit
class TestRelationshipValidation:
    """Per-relationship checks."""

    def test_unknown_endpoint(self):
        rel = Relationship("Customer", "Ghost", name="haunts")
        issues = ERDValidator().validate([entity("Customer", pk())], [rel])

        assert [(i.type, i.severity) for i in issues] == [("missing_entity", Severity.ERROR)]
        assert "Ghost" in issues[0].message

    def test_self_reference(self):
        employee = entity("Employee", pk(), Attribute("employee_id", is_foreign_key=True))
        rel = Relationship("Employee", "Employee", name="manages")
        issues = issues_by_type(ERDValidator().validate([employee], [rel]))

        assert issues["self_referencing"].severity == Severity.WARNING

    def test_one_to_one(self):
        rel = Relationship("User", "Profile", Cardinality.ONE_TO_ONE, name="has")
        profile = entity("Profile", pk(), Attribute("user_id", is_foreign_key=True))
        issues = ERDValidator().validate([entity("User", pk()), profile], [rel])

        assert [(i.type, i.severity) for i in issues] == [("one_to_one", Severity.INFO)]

    def test_many_to_many_is_informational(self):
        rel = Relationship("Student", "Course", Cardinality.MANY_TO_MANY, name="enrolls")
        issues = ERDValidator().validate([entity("Student", pk()), entity("Course", pk())], [rel])

        assert [(i.type, i.severity, i.auto_fixable) for i in issues] == [
            ("many_to_many", Severity.INFO, True)
        ]

    def test_missing_foreign_key(self):
        rel = Relationship("Customer", "Order", name="places")
        issues = ERDValidator().validate([entity("Customer", pk()), entity("Order", pk())], [rel])

        issue = issues_by_type(issues)["missing_foreign_key"]
        assert issue.severity == Severity.INFO
        assert "customer_id" in issue.suggestion

    def test_canonical_detection_uses_matcher(self):
        issues = ERDValidator(matcher=CDMMatcher()).validate([entity("Customer", pk())], [])

        assert [i.type for i in issues] == ["cdm_entity_detected"]
        assert "account" in issues[0].message


# =============================================================================
# Corrector
# =============================================================================

@pytest.mark.unit
class TestCorrector:
    """Corrected diagram generation."""

    def test_nothing_to_fix(self, parser, simple_diagram):
        assert ERDCorrector().correct(parser.parse(simple_diagram)) is None

    def test_missing_primary_key_gets_name_column(self, parser):
        corrected = parser.parse(MISSING_PK_DIAGRAM).corrected_diagram

        assert corrected.startswith("erDiagram\n")
        assert 'string name PK "Primary name column"' in corrected
        fixed = ERDParser().parse(corrected)
        assert fixed.get_entity("Widget").primary_attribute.name == "name"

    def test_defaults_survive_correction(self, parser):
        corrected = parser.parse(
            'erDiagram\n'
            '    Invoice {\n'
            '        decimal amount DEFAULT 0 "Amount due"\n'
            '        string stage DEFAULT "Not started"\n'
            '    }\n'
        ).corrected_diagram

        assert 'decimal amount DEFAULT 0 "Amount due"' in corrected
        assert 'string stage DEFAULT "Not started"' in corrected

        invoice = ERDParser().parse(corrected).get_entity("Invoice")
        assert invoice.get_attribute("amount").default_value == "0"
        assert invoice.get_attribute("amount").description == "Amount due"
        assert invoice.get_attribute("stage").default_value == "Not started"

    def test_existing_name_column_is_promoted(self, parser):
        corrected = parser.parse(
            "erDiagram\n    Tag {\n        string name\n        int weight\n    }\n"
        ).corrected_diagram

        assert "string name PK" in corrected
        assert corrected.count("name") == 1

    def test_platform_column_is_renamed(self, parser):
        corrected = parser.parse(SYSTEM_COLUMNS_DIAGRAM).corrected_diagram

        assert "string invoice_statecode" in corrected
        assert ERDParser().parse(corrected).is_valid

    def test_extra_primary_keys_are_demoted(self, parser):
        corrected = parser.parse(
            "erDiagram\n    Line {\n        string order_id PK\n        int line_no PK\n    }\n"
        ).corrected_diagram

        assert "string order_id PK" in corrected
        assert "int line_no NOT NULL" in corrected
        assert "line_no PK" not in corrected

    def test_many_to_many_becomes_intersection_entity(self, parser):
        corrected = parser.parse(MANY_TO_MANY_DIAGRAM).corrected_diagram
        fixed = ERDParser().parse(corrected)

        junction = fixed.get_entity("StudentCourse")
        assert junction is not None
        assert {a.name for a in junction.foreign_keys} == {"student_id", "course_id"}
        assert all(r.cardinality == Cardinality.ONE_TO_MANY for r in fixed.relationships)
        assert {r.from_entity for r in fixed.relationships} == {"Student", "Course"}

    def test_missing_foreign_key_is_added(self):
        result = ParseResult(
            entities=(
                entity("Customer", pk("customer_id")),
                entity("Order", pk("order_id"), Attribute("total", AttributeType.MONEY, original_type="money")),
            ),
            relationships=(Relationship("Customer", "Order", name="places"),),
            warnings=tuple(ERDValidator().validate(
                [entity("Customer", pk("customer_id")), entity("Order", pk("order_id"))],
                [Relationship("Customer", "Order", name="places")],
            )),
        )

        corrected = ERDCorrector().correct(result)

        assert 'string customer_id FK "Foreign key to Customer"' in corrected
        assert 'Customer ||--o{ Order : "places"' in corrected
