"""
Configuration test fixtures for the test suite.

Contains configuration and deployment request samples for testing the
metadata client, authentication and the CLI.
"""

# =============================================================================
# Dataverse Configuration Fixtures
# =============================================================================

SAMPLE_DATAVERSE_CONFIG = {
    "dataverse": {
        "environment_url": "https://contoso.crm.dynamics.com",
        "tenant_id": "00000000-0000-0000-0000-000000000000",
        "use_interactive_auth": False,
        "timeout_seconds": 30,
        "max_attempts": 3,
        "initial_delay_seconds": 1.0,
        "max_delay_seconds": 16.0,
        "max_concurrency": 2
    },
    "logging": {
        "level": "INFO"
    }
}

PLACEHOLDER_DATAVERSE_CONFIG = {
    "dataverse": {
        "environment_url": "https://yourorg.crm.dynamics.com"
    }
}

# =============================================================================
# Deployment Request Fixtures
# =============================================================================

SAMPLE_REQUEST = {
    "solutionUniqueName": "ContosoSales",
    "solutionDisplayName": "Contoso Sales",
    "publisherPrefix": "cts",
    "publisherUniqueName": "contoso",
    "publisherDisplayName": "Contoso"
}

CHOICE_REQUEST = {
    "solutionUniqueName": "ContosoSales",
    "solutionDisplayName": "Contoso Sales",
    "publisherPrefix": "cts",
    "publisherUniqueName": "contoso",
    "globalChoiceSets": [
        {"name": "OrderStatus", "options": ["New", "Shipped", "Delivered"]}
    ],
    "existingChoiceSets": ["cts_region"]
}
