"""
Built-in platform actions: projects, tasks, companies and suppliers.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..context import ExecutionContext
from ..registry import Action
from ..util import utc_now_iso
from .services import PlatformServices

MAX_LIMIT = 100
DEFAULT_CRITERIA = ["quality", "price", "delivery"]


# ============================================================
# Input models
# ============================================================

class CreateProjectInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    customer_company_id: Optional[str] = Field(default=None, alias="customerCompanyId")
    tags: List[str] = Field(default_factory=list)


class ListProjectsInput(BaseModel):
    limit: int = Field(default=25, ge=1)


class AssignTaskInput(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    due_date: Optional[str] = None


class SearchCompaniesInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=25, ge=1)


class EvaluateSupplierInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    supplier_id: str = Field(min_length=1, alias="supplierId")
    criteria: Optional[List[str]] = None


# ============================================================
# Actions
# ============================================================

class CreateProject(Action):
    name = "create_project"
    description = "Create a project in the caller's tenant."
    input_model = CreateProjectInput
    resource_type = "project"

    def __init__(self, services: PlatformServices):
        self.services = services

    def execute(self, ctx: ExecutionContext, params: CreateProjectInput) -> Dict[str, Any]:
        row = self.services.insert("projects", {
            "tenant_id": ctx.tenant_id,
            "title": params.name,
            "description": params.description,
            "customer_company_id": params.customer_company_id,
            "owner_id": ctx.user_id,
            "current_phase": "planning",
            "tags": list(params.tags),
        })
        return {"projectId": row["id"], "name": row["title"], "phase": row["current_phase"]}


class ListProjects(Action):
    name = "list_projects"
    description = "List the tenant's projects, newest first."
    input_model = ListProjectsInput
    resource_type = "project"

    def __init__(self, services: PlatformServices):
        self.services = services

    def execute(self, ctx: ExecutionContext, params: ListProjectsInput) -> Dict[str, Any]:
        limit = min(params.limit, MAX_LIMIT)
        rows = self.services.select("projects", tenant_id=ctx.tenant_id)
        rows = sorted(rows, key=lambda r: (r["created_at"], r["id"]), reverse=True)[:limit]
        projects = [
            {"id": r["id"], "title": r["title"], "phase": r.get("current_phase"), "created_at": r["created_at"]}
            for r in rows
        ]
        return {"projects": projects, "count": len(projects), "total": len(projects)}


class AssignTask(Action):
    name = "assign_task"
    description = "Create a task attached to an entity and assign it."
    input_model = AssignTaskInput
    resource_type = "task"

    def __init__(self, services: PlatformServices):
        self.services = services

    def execute(self, ctx: ExecutionContext, params: AssignTaskInput) -> Dict[str, Any]:
        row = self.services.insert("tasks", {
            "tenant_id": ctx.tenant_id,
            "title": params.title,
            "description": params.description,
            "assigned_to": params.assigned_to or ctx.user_id,
            "entity_type": params.entity_type,
            "entity_id": params.entity_id,
            "priority": params.priority,
            "due_date": params.due_date,
            "status": "todo",
            "created_by": ctx.user_id,
        })
        return {
            "taskId": row["id"],
            "title": row["title"],
            "assigned_to": row["assigned_to"],
            "status": row["status"],
            "priority": row["priority"],
        }


class SearchCompanies(Action):
    name = "search_companies"
    description = "Case-insensitive search over company name and organisation number."
    input_model = SearchCompaniesInput
    resource_type = "company"

    def __init__(self, services: PlatformServices):
        self.services = services

    def execute(self, ctx: ExecutionContext, params: SearchCompaniesInput) -> Dict[str, Any]:
        needle = params.query.lower()
        matches = []
        for r in self.services.select("companies"):
            if any(needle in str(r.get(f) or "").lower() for f in ("name", "org_number")):
                matches.append({
                    "id": r["id"],
                    "name": r.get("name"),
                    "org_number": r.get("org_number"),
                    "industry_code": r.get("industry_code"),
                    "employees": r.get("employees"),
                })
        companies = matches[:min(params.limit, MAX_LIMIT)]
        return {"companies": companies, "count": len(companies), "total": len(matches)}


class EvaluateSupplier(Action):
    """
    Score a supplier on the requested criteria.

    Suppliers may only evaluate their own company; the ownership condition
    from the policy decision is enforced here against the company record.
    """

    name = "evaluate_supplier"
    description = "Score a supplier on quality, price and delivery ratings."
    input_model = EvaluateSupplierInput
    resource_type = "supplier"

    def __init__(self, services: PlatformServices):
        self.services = services

    def execute(self, ctx: ExecutionContext, params: EvaluateSupplierInput) -> Dict[str, Any]:
        supplier = self.services.get("companies", params.supplier_id)
        if supplier is None:
            raise LookupError(f"Supplier {params.supplier_id} not found")

        ctx.enforce_ownership(lambda: ctx.user_id is not None and supplier.get("owner_id") == ctx.user_id)

        criteria = params.criteria or DEFAULT_CRITERIA
        ratings = supplier.get("ratings") or {}
        scored = {c: ratings[c] for c in criteria if c in ratings}
        score = round(sum(scored.values()) / len(scored)) if scored else None
        return {
            "supplierId": supplier["id"],
            "score": score,
            "criteria": criteria,
            "ratings": scored,
            "evaluated_at": utc_now_iso(),
        }


PLATFORM_ACTIONS = (CreateProject, ListProjects, AssignTask, SearchCompanies, EvaluateSupplier)
