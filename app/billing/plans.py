from dataclasses import dataclass, asdict

from app.errors import InvalidPlan

BASIC_PLAN_ID = "basic"       # 2 images
PREMIUM_PLAN_ID = "premium"   # 5 images

@dataclass(frozen=True)
class PlanSpec:
    id: str
    name: str
    price: int
    currency: str
    images_limit: int
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


PLANS: dict[str, PlanSpec] = {
    BASIC_PLAN_ID: PlanSpec(
        id=BASIC_PLAN_ID,
        name="Basic Plan",
        price=50,
        currency="INR",
        images_limit=2,
        description="Generate up to 2 magical Ghibli-style images",
    ),
    PREMIUM_PLAN_ID: PlanSpec(
        id=PREMIUM_PLAN_ID,
        name="Premium Plan",
        price=100,
        currency="INR",
        images_limit=5,
        description="Generate up to 5 magical Ghibli-style images with priority processing",
    ),
}


def get_plan(plan_id: str) -> PlanSpec:
    plan = PLANS.get(plan_id)
    if plan is None:
        raise InvalidPlan(f"Invalid plan selected: {plan_id}", details={"plan_id": plan_id})
    return plan
