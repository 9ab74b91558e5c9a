"""Management script for database setup and scheduled sweeps"""

import os

from flask.cli import FlaskGroup
from flask_migrate import Migrate, upgrade

from payrecon import create_app
from payrecon.extensions import db
from payrecon.models import Plan
from payrecon.workers.sweeper import Sweeper

# Initialize app and extensions
app = create_app(os.getenv("APP_ENV"))
cli = FlaskGroup(create_app=lambda: app)
Migrate(app, db)

DEFAULT_PLANS = [
    {"name": "FREE", "display_name": "Free", "monthly_price": 0, "yearly_price": 0, "max_installments": 1},
    {"name": "BASIC", "display_name": "Basic", "monthly_price": 99, "yearly_price": 990, "max_installments": 6},
    {"name": "PRO", "display_name": "Pro", "monthly_price": 199, "yearly_price": 1990, "max_installments": 12},
]


@cli.command("init-db")
def init_db():
    """Initialize the database"""
    with app.app_context():
        db.create_all()
        print("✅ Database initialized successfully!")


@cli.command("seed-plans")
def seed_plans():
    """Create the default plans if they are missing"""
    with app.app_context():
        created = 0
        for plan_data in DEFAULT_PLANS:
            if Plan.query.filter(db.func.upper(Plan.name) == plan_data["name"]).first():
                print(f"⚠️  Plan {plan_data['name']} already exists. Skipping.")
                continue
            db.session.add(Plan(**plan_data))
            created += 1
        db.session.commit()
        print(f"✅ {created} plan(s) created.")


@cli.command("expire-grace-periods")
def expire_grace_periods():
    """Downgrade users whose grace period has ended"""
    with app.app_context():
        count = Sweeper().expire_grace_periods()
        print(f"✅ Downgraded {count} user(s).")


@cli.command("cleanup-checkouts")
def cleanup_checkouts():
    """Mark expired pending checkout sessions as abandoned"""
    with app.app_context():
        count = Sweeper().cleanup_abandoned_checkouts()
        print(f"✅ Marked {count} checkout session(s) abandoned.")


@cli.command("migrate-db")
def migrate_db():
    """Apply any pending database migrations"""
    print("🔄 Applying database migrations...")
    with app.app_context():
        upgrade()
        print("✅ Database migrations applied successfully!")


if __name__ == "__main__":
    cli()
