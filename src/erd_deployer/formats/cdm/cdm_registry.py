"""
CDM Entity Registry.

Static catalog of standard (Common Data Model) tables that ship with the
target store. Diagram entities that match one of these templates can be
added to a solution instead of being recreated as custom tables.

The registry is ordered; declaration order is the tie-breaker when two
templates score equally for the same diagram entity.

Usage:
    from erd_deployer.formats.cdm.cdm_registry import CDMRegistry

    registry = CDMRegistry()
    account = registry.get("account")
    print(account.key_attributes)
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple


@dataclass(frozen=True)
class CDMTemplate:
    """
    A canonical entity template.

    Attributes:
        logical_name: Logical name in the target store (e.g. ``account``).
        display_name: Friendly display name.
        description: What the table represents.
        category: Business area (``core``, ``sales``, ``service`` ...).
        key_attributes: Characteristic column names used for shape matching.
        common_aliases: Alternative names authors use for this table.
        primary_name_attribute: Column shown as a record's name.
    """
    logical_name: str
    display_name: str
    description: str
    category: str
    key_attributes: Tuple[str, ...]
    common_aliases: Tuple[str, ...] = ()
    primary_name_attribute: str = "name"

    @property
    def primary_id_attribute(self) -> str:
        return f"{self.logical_name}id"


CDM_TEMPLATES: Tuple[CDMTemplate, ...] = (
    CDMTemplate(
        logical_name="account",
        display_name="Account",
        description="Business that represents a customer or potential customer.",
        category="core",
        key_attributes=(
            "accountid", "name", "accountnumber", "primarycontactid", "emailaddress1",
            "telephone1", "websiteurl", "address1_city", "industrycode", "revenue",
        ),
        common_aliases=("Customer", "Company", "Organization", "Client", "Business"),
    ),
    CDMTemplate(
        logical_name="contact",
        display_name="Contact",
        description="Person with whom a business unit has a relationship.",
        category="core",
        key_attributes=(
            "contactid", "fullname", "firstname", "lastname", "emailaddress1",
            "telephone1", "mobilephone", "jobtitle", "birthdate", "parentcustomerid",
        ),
        common_aliases=("Person", "Individual", "People"),
        primary_name_attribute="fullname",
    ),
    CDMTemplate(
        logical_name="lead",
        display_name="Lead",
        description="Prospect or potential customer for products or services.",
        category="sales",
        key_attributes=(
            "leadid", "fullname", "firstname", "lastname", "companyname",
            "emailaddress1", "telephone1", "subject", "leadsourcecode",
        ),
        common_aliases=("Prospect", "SalesLead"),
        primary_name_attribute="fullname",
    ),
    CDMTemplate(
        logical_name="opportunity",
        display_name="Opportunity",
        description="Potential revenue-generating event.",
        category="sales",
        key_attributes=(
            "opportunityid", "name", "estimatedvalue", "estimatedclosedate",
            "closeprobability", "customerid", "parentaccountid", "stepname",
        ),
        common_aliases=("Deal", "Sale", "Pipeline"),
    ),
    CDMTemplate(
        logical_name="incident",
        display_name="Case",
        description="Service request case associated with a contract.",
        category="service",
        key_attributes=(
            "incidentid", "title", "ticketnumber", "customerid", "prioritycode",
            "casetypecode", "description",
        ),
        common_aliases=("Case", "Ticket", "Issue", "ServiceRequest", "Incident"),
        primary_name_attribute="title",
    ),
    CDMTemplate(
        logical_name="systemuser",
        display_name="User",
        description="Person with access to the system who owns objects.",
        category="system",
        key_attributes=(
            "systemuserid", "fullname", "firstname", "lastname",
            "internalemailaddress", "domainname", "businessunitid",
        ),
        common_aliases=("User", "Employee", "Staff", "SystemUser"),
        primary_name_attribute="fullname",
    ),
    CDMTemplate(
        logical_name="team",
        display_name="Team",
        description="Collection of system users that routinely collaborate.",
        category="system",
        key_attributes=("teamid", "name", "businessunitid", "teamtype", "administratorid"),
        common_aliases=("Group", "WorkGroup"),
    ),
    CDMTemplate(
        logical_name="businessunit",
        display_name="Business Unit",
        description="Business, division, or department in the organization.",
        category="system",
        key_attributes=("businessunitid", "name", "parentbusinessunitid", "divisionname"),
        common_aliases=("Department", "Division", "BusinessUnit"),
    ),
    CDMTemplate(
        logical_name="product",
        display_name="Product",
        description="Information about products and their pricing.",
        category="sales",
        key_attributes=(
            "productid", "name", "productnumber", "price", "standardcost",
            "description", "quantityonhand",
        ),
        common_aliases=("Item", "Goods", "Merchandise"),
    ),
    CDMTemplate(
        logical_name="quote",
        display_name="Quote",
        description="Formal offer for products or services to a customer.",
        category="sales",
        key_attributes=(
            "quoteid", "name", "quotenumber", "customerid", "totalamount",
            "effectivefrom", "effectiveto", "opportunityid",
        ),
        common_aliases=("Quotation", "Estimate", "Proposal"),
    ),
    CDMTemplate(
        logical_name="salesorder",
        display_name="Order",
        description="Quote that has been accepted.",
        category="sales",
        key_attributes=(
            "salesorderid", "name", "ordernumber", "customerid", "totalamount",
            "datefulfilled", "quoteid", "requestdeliveryby",
        ),
        common_aliases=("Order", "SalesOrder", "PurchaseOrder"),
    ),
    CDMTemplate(
        logical_name="invoice",
        display_name="Invoice",
        description="Order that has been billed.",
        category="sales",
        key_attributes=(
            "invoiceid", "name", "invoicenumber", "customerid", "totalamount",
            "duedate", "salesorderid", "datedelivered",
        ),
        common_aliases=("Bill", "Billing"),
    ),
    CDMTemplate(
        logical_name="campaign",
        display_name="Campaign",
        description="Container for campaign activities and responses.",
        category="marketing",
        key_attributes=(
            "campaignid", "name", "codename", "budgetedcost", "actualstart",
            "actualend", "typecode",
        ),
        common_aliases=("MarketingCampaign", "Promotion"),
    ),
    CDMTemplate(
        logical_name="competitor",
        display_name="Competitor",
        description="Business competing for the sale represented by a lead or opportunity.",
        category="sales",
        key_attributes=("competitorid", "name", "websiteurl", "strengths", "weaknesses"),
        common_aliases=("Rival",),
    ),
    CDMTemplate(
        logical_name="task",
        display_name="Task",
        description="Generic activity representing work to be done.",
        category="activity",
        key_attributes=(
            "activityid", "subject", "description", "scheduledend",
            "prioritycode", "regardingobjectid", "percentcomplete",
        ),
        common_aliases=("Todo", "Activity", "WorkItem"),
        primary_name_attribute="subject",
    ),
    CDMTemplate(
        logical_name="appointment",
        display_name="Appointment",
        description="Commitment representing a time interval with start and end times.",
        category="activity",
        key_attributes=(
            "activityid", "subject", "scheduledstart", "scheduledend",
            "location", "requiredattendees", "regardingobjectid",
        ),
        common_aliases=("Meeting", "Event", "Booking"),
        primary_name_attribute="subject",
    ),
    CDMTemplate(
        logical_name="email",
        display_name="Email",
        description="Activity that is delivered using email protocols.",
        category="activity",
        key_attributes=(
            "activityid", "subject", "description", "sender", "torecipients",
            "regardingobjectid", "directioncode",
        ),
        common_aliases=("EmailMessage", "Message", "Mail"),
        primary_name_attribute="subject",
    ),
    CDMTemplate(
        logical_name="phonecall",
        display_name="Phone Call",
        description="Activity to track a telephone call.",
        category="activity",
        key_attributes=(
            "activityid", "subject", "phonenumber", "description",
            "directioncode", "regardingobjectid",
        ),
        common_aliases=("Call", "PhoneCall"),
        primary_name_attribute="subject",
    ),
)


class CDMRegistry:
    """
    Read-only, ordered view over the canonical templates.

    A custom template tuple can be injected for tests or alternative catalogs.
    """

    def __init__(self, templates: Optional[Tuple[CDMTemplate, ...]] = None):
        self._templates: Tuple[CDMTemplate, ...] = (
            CDM_TEMPLATES if templates is None else tuple(templates)
        )
        self._by_name: Dict[str, CDMTemplate] = {t.logical_name: t for t in self._templates}

    def __iter__(self) -> Iterator[CDMTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, logical_name: str) -> bool:
        return logical_name.lower() in self._by_name

    def get(self, logical_name: str) -> Optional[CDMTemplate]:
        """Get a template by logical name (case-insensitive)."""
        return self._by_name.get(logical_name.lower())
