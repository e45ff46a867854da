"""
Tests for SchemaPlanner.

Covers:
- Phase ordering and determinism
- Schema, lookup and primary name column naming
- Relationship variants (self reference, duplicate pairs, many-to-many, 1:1)
- Lookup columns and choice set binding
- Canonical table opt-in
- Request and collision errors
"""

import pytest

from fixtures import (
    CHOICE_DIAGRAM,
    LOOKUP_DIAGRAM,
    MANY_TO_MANY_DIAGRAM,
    MISSING_PK_DIAGRAM,
    SELF_REFERENCE_DIAGRAM,
)

from erd_deployer.core.services.planner import SchemaPlanner
from erd_deployer.formats.cdm import CDMMatcher
from erd_deployer.formats.erd import Attribute, AttributeType, Cardinality, Entity, ERDParser
from erd_deployer.shared.models.deployment import DeploymentRequest
from erd_deployer.shared.models.operations import (
    CreateAttributeOperation,
    CreateEntityOperation,
    DeploymentPlan,
    OperationKind,
    PlanError,
)


@pytest.fixture
def planner():
    return SchemaPlanner()


def plan_for(text, request, matches=()):
    result = ERDParser().parse(text)
    return SchemaPlanner().plan(result.entities, result.relationships, list(matches), request)


def request_with(**overrides):
    values = {
        "solutionUniqueName": "ContosoSales",
        "solutionDisplayName": "Contoso Sales",
        "publisherPrefix": "cts",
        "publisherUniqueName": "contoso",
    }
    values.update(overrides)
    return DeploymentRequest.from_dict(values)


def keys(plan):
    return [op.key for op in plan]


# =============================================================================
# Ordering
# =============================================================================

@pytest.mark.unit
class TestPlanOrdering:
    """Phase order, dependency order and determinism."""

    def test_simple_plan(self, simple_diagram, sample_request):
        plan = plan_for(simple_diagram, sample_request)

        assert keys(plan) == [
            "publisher:contoso",
            "solution:ContosoSales",
            "entity:cts_customer",
            "entity:cts_order",
            "attribute:cts_customer.cts_full_name",
            "attribute:cts_customer.cts_email",
            "attribute:cts_order.cts_order_date",
            "attribute:cts_order.cts_total",
            "relationship:cts_customer_order",
        ]
        assert plan.custom_entities == ("Customer", "Order")
        assert plan.canonical_entities == ()
        assert plan.warnings == ()

    def test_phases_are_contiguous(self, simple_diagram, sample_request):
        plan = plan_for(simple_diagram, sample_request)
        kinds = [op.kind for op in plan]

        assert kinds == sorted(kinds, key=lambda kind: list(OperationKind).index(kind))

    def test_planning_is_deterministic(self, simple_diagram, sample_request):
        assert plan_for(simple_diagram, sample_request) == plan_for(simple_diagram, sample_request)

    def test_every_dependency_precedes_its_dependent(self, simple_diagram, sample_request):
        plan = plan_for(simple_diagram, sample_request)
        seen = set()
        for op in plan:
            assert set(op.depends_on) <= seen
            seen.add(op.key)

    def test_validate_ordering_rejects_out_of_order_plan(self):
        entity_op = CreateEntityOperation(
            source_entity="Order",
            logical_name="cts_order",
            display_name="Order",
            solution_unique_name="ContosoSales",
            primary_name_schema="cts_order_name",
        )
        attribute_op = CreateAttributeOperation(
            entity_logical_name="cts_order",
            schema_name="cts_total",
            display_name="Total",
            attribute_type=AttributeType.MONEY,
        )
        plan = DeploymentPlan(operations=(attribute_op, entity_op, entity_op))

        with pytest.raises(PlanError) as exc_info:
            plan.validate_ordering()

        problems = exc_info.value.problems
        assert any("attribute:cts_order.cts_total" in p and "entity:cts_order" in p for p in problems)
        assert any("duplicate key 'entity:cts_order'" in p for p in problems)

    def test_validate_operations_collects_failures(self):
        bad = CreateAttributeOperation(
            entity_logical_name="cts_order",
            schema_name="Total",
            display_name="Total",
            attribute_type=AttributeType.LOOKUP,
        )

        with pytest.raises(PlanError) as exc_info:
            DeploymentPlan(operations=(bad,)).validate_operations()

        assert len(exc_info.value.problems) == 1
        assert "invalid column schema name 'Total'" in exc_info.value.problems[0]


# =============================================================================
# Tables and Columns
# =============================================================================

@pytest.mark.unit
class TestTablesAndColumns:
    """Table names, primary name columns and column schema names."""

    def test_entity_operation(self, simple_diagram, sample_request):
        customer = plan_for(simple_diagram, sample_request).get("entity:cts_customer")

        assert customer.display_name == "Customer"
        assert customer.solution_unique_name == "ContosoSales"
        assert customer.primary_name_schema == "cts_customer_customer_id"
        assert customer.primary_name_display == "Customer Id"
        assert customer.depends_on == ("solution:ContosoSales",)

    def test_entity_without_primary_key_gets_name_column(self, sample_request):
        plan = plan_for(MISSING_PK_DIAGRAM, sample_request)
        widget = plan.get("entity:cts_widget")

        assert widget.primary_name_schema == "cts_widget_name"
        assert widget.primary_name_display == "Widget Name"
        assert [op.key for op in plan.by_kind(OperationKind.ATTRIBUTE)] == [
            "attribute:cts_widget.cts_label",
            "attribute:cts_widget.cts_size",
        ]

    def test_primary_name_column_choice(self):
        text_key = Entity("Tag", attributes=(Attribute("code", is_primary_key=True),))
        numeric_key = Entity("Tag", attributes=(
            Attribute("tag_id", AttributeType.INTEGER, is_primary_key=True),
            Attribute("name", display_name="Label"),
        ))
        no_name = Entity("Tag", display_name="Tag", attributes=(
            Attribute("tag_id", AttributeType.INTEGER, is_primary_key=True),
        ))

        assert SchemaPlanner.primary_name_column(text_key) == ("code", "Code")
        assert SchemaPlanner.primary_name_column(numeric_key) == ("name", "Label")
        assert SchemaPlanner.primary_name_column(no_name) == ("name", "Tag Name")

    def test_reserved_column_names_are_entity_qualified(self, sample_request):
        plan = plan_for(
            "erDiagram\n    Ticket {\n        string ticket_id PK\n"
            "        text description\n        string status\n    }\n",
            sample_request,
        )

        assert [op.key for op in plan.by_kind(OperationKind.ATTRIBUTE)] == [
            "attribute:cts_ticket.cts_ticket_description",
        ]
        assert plan.get("attribute:cts_ticket.cts_ticket_description").attribute_type == AttributeType.MEMO

    def test_column_types_and_requirement(self, sample_request):
        plan = plan_for(
            "erDiagram\n    Product {\n        string product_id PK\n"
            "        money price NOT NULL\n        bool active\n    }\n",
            sample_request,
        )
        price = plan.get("attribute:cts_product.cts_price")

        assert price.attribute_type == AttributeType.MONEY
        assert price.is_required
        assert price.source_entity == "Product"
        assert price.source_attribute == "price"
        assert plan.get("attribute:cts_product.cts_active").attribute_type == AttributeType.BOOLEAN

    def test_yes_no_and_choice_defaults_are_carried(self, sample_request):
        plan = plan_for(
            "erDiagram\n    Ticket {\n        string ticket_id PK\n"
            "        bool urgent DEFAULT true\n"
            "        choice(Open,Closed) stage DEFAULT Closed\n    }\n",
            sample_request,
        )
        urgent = plan.get("attribute:cts_ticket.cts_urgent")
        stage = plan.get("attribute:cts_ticket.cts_stage")

        assert urgent.default_value == "true"
        assert urgent.to_payload()["DefaultValue"] is True
        assert stage.default_value == "Closed"
        assert stage.to_payload()["DefaultFormValue"] == 100000001
        assert plan.warnings == ()

    def test_unsupported_defaults_are_ignored_with_warning(self, sample_request):
        plan = plan_for(
            "erDiagram\n    Invoice {\n        string invoice_id PK\n"
            "        decimal amount DEFAULT 0\n"
            "        choice(Draft,Sent) stage DEFAULT Paid\n    }\n",
            sample_request,
        )
        amount = plan.get("attribute:cts_invoice.cts_amount")
        stage = plan.get("attribute:cts_invoice.cts_stage")

        assert amount.default_value is None
        assert "DefaultValue" not in amount.to_payload()
        assert stage.default_value is None
        assert "DefaultFormValue" not in stage.to_payload()
        assert any(
            "'Invoice.amount' is ignored" in w and "Decimal columns do not support defaults" in w
            for w in plan.warnings
        )
        assert any("'Paid' for 'Invoice.stage' is ignored" in w for w in plan.warnings)
        plan.validate_operations()

    def test_default_on_unsupported_column_fails_validation(self):
        op = CreateAttributeOperation(
            entity_logical_name="cts_invoice",
            schema_name="cts_amount",
            display_name="Amount",
            attribute_type=AttributeType.DECIMAL,
            default_value="0",
        )

        with pytest.raises(PlanError) as exc_info:
            DeploymentPlan(operations=(op,)).validate_operations()

        assert "Decimal columns do not take a default value" in exc_info.value.problems[0]

    def test_columns_sharing_a_schema_name_are_skipped(self, sample_request):
        plan = plan_for(
            "erDiagram\n    Item {\n        string item_id PK\n"
            "        text description\n        string item_description\n    }\n",
            sample_request,
        )

        assert [op.key for op in plan.by_kind(OperationKind.ATTRIBUTE)] == [
            "attribute:cts_item.cts_item_description",
        ]
        assert any("duplicates schema name 'cts_item_description'" in w for w in plan.warnings)


# =============================================================================
# Relationships
# =============================================================================

@pytest.mark.unit
class TestRelationships:
    """Relationship naming and variants."""

    def test_one_to_many(self, simple_diagram, sample_request):
        rel = plan_for(simple_diagram, sample_request).get("relationship:cts_customer_order")

        assert rel.referenced_entity == "cts_customer"
        assert rel.referencing_entity == "cts_order"
        assert rel.cardinality == Cardinality.ONE_TO_MANY
        assert rel.lookup_schema_name == "cts_customerid"
        assert rel.depends_on == ("entity:cts_customer", "entity:cts_order")

    def test_self_reference(self, sample_request):
        rel = plan_for(SELF_REFERENCE_DIAGRAM, sample_request).get("relationship:cts_employee_employee")

        assert rel.lookup_schema_name == "cts_parentemployeeid"
        assert rel.referenced_entity == rel.referencing_entity == "cts_employee"
        assert rel.depends_on == ("entity:cts_employee",)

    def test_same_pair_twice_gets_numbered_names(self, sample_request):
        plan = plan_for(
            "erDiagram\n"
            "    Customer {\n        string customer_id PK\n    }\n"
            "    Order {\n        string order_id PK\n    }\n"
            "    Customer ||--o{ Order : places\n"
            "    Customer ||--o{ Order : approves\n",
            sample_request,
        )
        relationships = plan.by_kind(OperationKind.RELATIONSHIP)

        assert [r.schema_name for r in relationships] == ["cts_customer_order", "cts_customer_order_2"]
        assert [r.lookup_schema_name for r in relationships] == ["cts_customerid", "cts_customerid_2"]

    def test_many_to_many(self, sample_request):
        [rel] = plan_for(MANY_TO_MANY_DIAGRAM, sample_request).by_kind(OperationKind.RELATIONSHIP)

        assert rel.cardinality == Cardinality.MANY_TO_MANY
        assert rel.schema_name == "cts_student_course"
        assert rel.intersect_entity_name == "cts_student_course"
        assert rel.to_payload()["IntersectEntityName"] == "cts_student_course"

    def test_one_to_one_is_deployed_as_one_to_many(self, sample_request):
        plan = plan_for(
            "erDiagram\n"
            "    User {\n        string user_id PK\n    }\n"
            "    Profile {\n        string profile_id PK\n    }\n"
            "    User ||--|| Profile : has\n",
            sample_request,
        )
        [rel] = plan.by_kind(OperationKind.RELATIONSHIP)

        assert rel.cardinality == Cardinality.ONE_TO_MANY
        assert any("One-to-one relationship 'has'" in w for w in plan.warnings)

    def test_lookup_columns_become_relationships(self, sample_request):
        plan = plan_for(LOOKUP_DIAGRAM, sample_request)
        [rel] = plan.by_kind(OperationKind.RELATIONSHIP)

        assert rel.schema_name == "cts_project_task"
        assert rel.referenced_entity == "cts_project"
        assert rel.referencing_entity == "cts_task"
        assert rel.lookup_schema_name == "cts_project"
        assert plan.by_kind(OperationKind.ATTRIBUTE) == [plan.get("attribute:cts_project.cts_title")]
        assert any("targets unknown entity 'Sprint'" in w for w in plan.warnings)

    def test_lookup_duplicating_a_relationship_is_not_repeated(self, sample_request):
        plan = plan_for(
            "erDiagram\n"
            "    Project {\n        string project_id PK\n    }\n"
            "    Task {\n        string task_id PK\n        lookup(Project) project\n    }\n"
            "    Project ||--o{ Task : contains\n",
            sample_request,
        )

        assert len(plan.by_kind(OperationKind.RELATIONSHIP)) == 1


# =============================================================================
# Choice Sets
# =============================================================================

@pytest.mark.unit
class TestChoiceSets:
    """Inline choices, global choice binding and choice set operations."""

    def test_inline_choice_values(self, sample_request):
        plan = plan_for(CHOICE_DIAGRAM, sample_request)
        priority = plan.get("attribute:cts_order.cts_priority")

        assert [(o.label, o.value) for o in priority.choice_options] == [
            ("Low", 100000000), ("Normal", 100000001), ("High", 100000002),
        ]
        assert priority.global_choice_set == ""

    def test_existing_choice_set_is_bound(self):
        plan = plan_for(CHOICE_DIAGRAM, request_with(existingChoiceSets=["OrderStatus"]))
        state = plan.get("attribute:cts_order.cts_order_state")

        assert state.global_choice_set == "OrderStatus"
        assert state.choice_options == ()
        assert "GlobalOptionSet@odata.bind" in state.to_payload()

    def test_choice_set_created_by_request_is_copied(self, choice_request):
        plan = plan_for(CHOICE_DIAGRAM, choice_request)
        state = plan.get("attribute:cts_order.cts_order_state")

        assert state.global_choice_set == ""
        assert [o.label for o in state.choice_options] == ["New", "Shipped", "Delivered"]
        assert any("local copy of choice set 'OrderStatus'" in w for w in plan.warnings)

    def test_unknown_choice_set_column_is_skipped(self, sample_request):
        plan = plan_for(CHOICE_DIAGRAM, sample_request)

        assert plan.get("attribute:cts_order.cts_order_state") is None
        assert any("unknown choice set 'OrderStatus'" in w for w in plan.warnings)

    def test_choice_set_operations_come_last(self, choice_request):
        plan = plan_for(CHOICE_DIAGRAM, choice_request)

        assert keys(plan)[-2:] == ["choice:cts_orderstatus", "choice-attach:cts_region"]
        ensure = plan.get("choice:cts_orderstatus")
        assert ensure.to_payload()["IsGlobal"] is True
        assert ensure.to_payload()["Name"] == "cts_orderstatus"

    def test_existing_names_are_deduplicated(self):
        plan = plan_for(CHOICE_DIAGRAM, request_with(existingChoiceSets=["cts_region", "CTS_Region"]))

        assert [op.key for op in plan.by_kind(OperationKind.CHOICE_SET)] == ["choice-attach:cts_region"]


# =============================================================================
# Canonical Tables
# =============================================================================

@pytest.mark.unit
class TestCanonicalTables:
    """Standard table mapping is opt-in."""

    def test_matches_are_ignored_without_opt_in(self, simple_diagram, sample_request):
        result = ERDParser().parse(simple_diagram)
        matches = CDMMatcher().detect_canonical_entities(result.entities)

        plan = SchemaPlanner().plan(result.entities, result.relationships, matches, sample_request)

        assert plan.by_kind(OperationKind.CANONICAL_ENTITY) == []

    def test_selected_entity_is_integrated(self, simple_diagram):
        result = ERDParser().parse(simple_diagram)
        matches = CDMMatcher().detect_canonical_entities(result.entities)
        request = request_with(includeCdmEntities=True, cdmEntitySelection=["Customer"])

        plan = SchemaPlanner().plan(result.entities, result.relationships, matches, request)

        assert keys(plan)[:4] == [
            "publisher:contoso", "solution:ContosoSales", "cdm:account", "entity:cts_order",
        ]
        assert plan.canonical_entities == ("Customer",)
        assert plan.logical_name_for("Customer") == "account"
        assert plan.get("attribute:cts_customer.cts_full_name") is None

        rel = plan.get("relationship:cts_customer_order")
        assert rel.referenced_entity == "account"
        assert rel.depends_on == ("cdm:account", "entity:cts_order")

    def test_all_matches_without_selection(self, simple_diagram):
        result = ERDParser().parse(simple_diagram)
        matches = CDMMatcher().detect_canonical_entities(result.entities)

        plan = SchemaPlanner().plan(
            result.entities, result.relationships, matches, request_with(includeCdmEntities=True)
        )

        assert [op.key for op in plan.by_kind(OperationKind.CANONICAL_ENTITY)] == [
            "cdm:account", "cdm:salesorder",
        ]
        assert plan.by_kind(OperationKind.ENTITY) == []


# =============================================================================
# Errors
# =============================================================================

@pytest.mark.unit
class TestPlanErrors:
    """Invalid requests and name collisions."""

    @pytest.mark.parametrize("prefix", ["1x", "c", "toolongprefix", "mscrmx", "Cts"])
    def test_invalid_prefix(self, planner, prefix):
        request = DeploymentRequest("ContosoSales", "Contoso Sales", prefix)

        with pytest.raises(PlanError, match="Invalid deployment request"):
            planner.plan([Entity("Tag")], [], [], request)

    def test_entity_names_colliding_after_normalization(self, planner, sample_request):
        entities = [
            Entity("OrderLine", attributes=(Attribute("line_id", is_primary_key=True),)),
            Entity("Orderline", attributes=(Attribute("line_id", is_primary_key=True),)),
        ]

        with pytest.raises(PlanError) as exc_info:
            planner.plan(entities, [], [], sample_request)

        assert "cts_orderline" in exc_info.value.problems[0]

    def test_to_dict(self, simple_diagram, sample_request):
        data = plan_for(simple_diagram, sample_request).to_dict()

        assert data["solution"] == "ContosoSales"
        assert data["prefix"] == "cts"
        assert data["operations"][1] == {
            "key": "solution:ContosoSales",
            "kind": "solution",
            "dependsOn": ["publisher:contoso"],
            "description": "Ensure solution 'ContosoSales'",
        }
