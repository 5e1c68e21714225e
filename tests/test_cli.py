import json

from sqlalchemy import func, select

from givecart.extensions import db
from givecart.models import Cause, Donation


def test_repair_raised(app, cause):
    db.session.add(Donation(cause_id="cause-1", amount_cents=4200, submission_id="x"))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["causes", "repair-raised", "--cause-id", "cause-1"])

    assert result.exit_code == 0, result.output
    db.session.expire_all()
    assert db.session.get(Cause, "cause-1").raised_cents == 4200


def test_seed_demo(app):
    result = app.test_cli_runner().invoke(args=["causes", "seed-demo", "--count", "2", "--seed", "7"])

    assert result.exit_code == 0, result.output
    assert db.session.execute(select(func.count()).select_from(Cause)).scalar_one() == 2
    assert {c.goal_cents for c in db.session.execute(select(Cause)).scalars()} == {77700}


def test_prefetch_without_vendor_trips_breaker(app, tmp_path):
    rows = [
        {"id": i, "vendor_product_id": i, "pricing_data": [[{"id": 1}], [{"options": [i, 2]}]]}
        for i in range(8)
    ]
    path = tmp_path / "items.json"
    path.write_text(json.dumps(rows), encoding="utf-8")

    result = app.test_cli_runner().invoke(args=["prices", "prefetch", "--file", str(path)])

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output.strip().splitlines()[-1])
    assert summary["failed"] == 5
    assert summary["skipped"] == 3
