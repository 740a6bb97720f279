"""
HR Analytics Synthetic Dataset Generator

Generates interconnected employees, interactions, kudos and contribution
snapshots per tenant as CSV files, ready for scripts/import_tenant_data.py.
"""

import argparse
import csv
import random
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List

from faker import Faker

fake = Faker()
Faker.seed(42)
random.seed(42)

DEPARTMENTS: Dict[str, List[str]] = {
    "Engineering": ["Platform", "Payments", "Mobile"],
    "Sales": ["Enterprise", "SMB"],
    "Operations": ["Support", "Logistics"],
}
ROLES = ["Engineer", "Senior Engineer", "Manager", "Analyst", "Specialist"]

INTERACTION_TEMPLATES = [
    "How can you help with the deployment issue?",
    "I suggest we fix the bug in the retry loop before release.",
    "I will draft a proposal for the new onboarding flow.",
    "Could you review the solution I implemented for the billing error?",
    "Let me know if the idea works; I have started a prototype.",
    "What is the status of the migration?",
    "We should debug the timeout and resolve the obstacle today.",
    "I have created a dashboard and launched it for the team.",
]
KUDOS_TEMPLATES = [
    "Thanks for jumping on the incident!",
    "Great pairing session today.",
    "Your write-up made the decision easy.",
    "Huge help with the customer escalation.",
]


@dataclass
class Employee:
    employee_id: str
    name: str
    email: str
    department: str
    team: str
    role: str
    hire_date: str


def _iso(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def generate_employees(count: int) -> List[Employee]:
    employees = []
    for index in range(count):
        department = random.choice(list(DEPARTMENTS))
        name = fake.name()
        employees.append(
            Employee(
                employee_id=f"emp{index + 1:04d}",
                name=name,
                email=f"{name.lower().replace(' ', '.')}@{fake.domain_name()}",
                department=department,
                team=random.choice(DEPARTMENTS[department]),
                role=random.choice(ROLES),
                hire_date=fake.date_between(start_date="-6y", end_date="-30d").isoformat(),
            )
        )
    return employees


def generate_interactions(employees: List[Employee], count: int, now: datetime) -> List[dict]:
    rows = []
    for _ in range(count):
        sender, receiver = random.sample(employees, 2)
        rows.append({
            "from_employee_id": sender.employee_id,
            "to_employee_id": receiver.employee_id,
            "interaction_type": random.choice(["message", "review", "meeting"]),
            "content": random.choice(INTERACTION_TEMPLATES),
            "timestamp": _iso(now - timedelta(days=random.randint(0, 90), minutes=random.randint(0, 1440))),
        })
    return rows


def generate_kudos(employees: List[Employee], count: int, now: datetime) -> List[dict]:
    rows = []
    for _ in range(count):
        sender, receiver = random.sample(employees, 2)
        rows.append({
            "from_employee_id": sender.employee_id,
            "to_employee_id": receiver.employee_id,
            "message": random.choice(KUDOS_TEMPLATES),
            "timestamp": _iso(now - timedelta(days=random.randint(0, 90))),
        })
    return rows


def generate_contributions(employees: List[Employee], snapshots: int, now: datetime) -> List[dict]:
    rows = []
    for employee in employees:
        base = random.randint(35, 85)
        for week in range(snapshots):
            scores = [max(0, min(100, base + random.randint(-10, 10))) for _ in range(3)]
            overall = round(scores[0] * 0.4 + scores[1] * 0.3 + scores[2] * 0.3)
            rows.append({
                "employee_id": employee.employee_id,
                "problem_solving_score": scores[0],
                "collaboration_score": scores[1],
                "initiative_score": scores[2],
                "overall_score": overall,
                "calculated_at": _iso(now - timedelta(weeks=snapshots - week)),
            })
    return rows


def write_csv(path: Path, rows: List[dict]) -> None:
    if not rows:
        return
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0]), lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)


def create_tenant_dataset(output_dir: Path, tenant_id: str, employees: int) -> None:
    now = datetime.now(timezone.utc)
    staff = generate_employees(employees)
    tenant_dir = output_dir / tenant_id
    tenant_dir.mkdir(parents=True, exist_ok=True)

    write_csv(tenant_dir / "employees.csv", [asdict(e) for e in staff])
    write_csv(tenant_dir / "interactions.csv", generate_interactions(staff, employees * 6, now))
    write_csv(tenant_dir / "kudos.csv", generate_kudos(staff, employees * 3, now))
    write_csv(tenant_dir / "contributions.csv", generate_contributions(staff, 6, now))

    print(f"  Generated tenant '{tenant_id}' with {employees} employees -> {tenant_dir}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate synthetic HR analytics data")
    parser.add_argument("--tenants", nargs="+", default=["acme", "globex"])
    parser.add_argument("--employees", type=int, default=40)
    parser.add_argument("--output", type=Path, default=Path(__file__).parent / "tenants")
    args = parser.parse_args()

    for tenant in args.tenants:
        create_tenant_dataset(args.output, tenant, max(2, args.employees))

    print("\nDataset ready for import!")
