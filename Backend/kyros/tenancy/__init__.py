"""
Multi-tenancy package.

Modules:
    context: ActorContext resolution and branch/owner authorization
    queries: business-scoped query helpers
"""

from .context import (
    ActorContext,
    get_actor_context,
    require_branch_access,
    require_owner,
    resolve_actor_context,
)

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Branch queries
    get_branch,
    list_branch_schedules,
    list_open_days,
    count_branch_dependents,
    # Service / employee queries
    list_services_for_branch,
    get_services_by_ids,
    list_branch_employees,
    list_employee_service_pairs,
    list_employee_service_ids,
    # Appointment queries
    find_overlapping_appointments,
    list_appointments_in_range,
    get_appointment,
    # Client queries
    find_client_by_phone,
    search_clients,
)

__all__ = [
    # Context
    "ActorContext",
    "get_actor_context",
    "require_branch_access",
    "require_owner",
    "resolve_actor_context",
    # Query helpers
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "get_branch",
    "list_branch_schedules",
    "list_open_days",
    "count_branch_dependents",
    "list_services_for_branch",
    "get_services_by_ids",
    "list_branch_employees",
    "list_employee_service_pairs",
    "list_employee_service_ids",
    "find_overlapping_appointments",
    "list_appointments_in_range",
    "get_appointment",
    "find_client_by_phone",
    "search_clients",
]
