import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from clinic_pos.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from clinic_pos.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from clinic_pos.inventory import inventory as inventory_blueprint
    app.register_blueprint(inventory_blueprint, url_prefix='/inventory')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error='Not found'), 404

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify(error='Server error'), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    # ── ProxyFix (HTTPS termination at the load balancer) ─────────
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables and seed today's bill sequence."""
        from datetime import date
        from clinic_pos.billing.models import BillSequence

        db.create_all()
        click.echo('✅  Database tables created.')

        # Pre-seeding avoids an INSERT inside the first checkout's transaction.
        today = date.today()
        if not db.session.get(BillSequence, today):
            db.session.add(BillSequence(day=today, last_seq=0))
            db.session.commit()
            click.echo(f'✅  Bill sequence seeded for {today} (starts at 0).')
        else:
            click.echo(f'ℹ️   Bill sequence for {today} already exists.')

    @app.cli.command('show-sequences')
    @click.option('--limit', default=14, show_default=True, help='Number of days to show')
    def show_sequences(limit):
        """Show recent bill sequence counters (diagnostic)."""
        from clinic_pos.billing.invoice import format_bill_number
        from clinic_pos.billing.models import BillSequence
        rows = BillSequence.query.order_by(BillSequence.day.desc()).limit(limit).all()
        if not rows:
            click.echo('No sequence rows found. Run flask init-db first.')
            return
        click.echo(f'{"Day":<12} {"Last Seq":<10} {"Next Bill"}')
        click.echo('─' * 40)
        for row in rows:
            click.echo(f'{row.day.isoformat():<12} {row.last_seq:<10} '
                       f'{format_bill_number(row.day, row.last_seq + 1)}')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the database with demo products and batches."""
        import random
        from decimal import Decimal
        from datetime import date, timedelta
        from clinic_pos.inventory.models import Product, ProductBatch

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if Product.query.count() >= 5:
            click.echo("ℹ️   Products already present, skipping.")
            return

        names = ['Paracetamol 500mg', 'Amoxicillin 250mg', 'Cetirizine 10mg',
                 'ORS Sachet', 'Vitamin C 500mg', 'Cough Syrup 100ml',
                 'Antiseptic Cream', 'Bandage Roll']
        today = date.today()
        for i, name in enumerate(names, start=1):
            product = Product(
                name=name,
                barcode=f'DEMO{i:03d}',
                price=Decimal(random.randint(10, 400)),
            )
            db.session.add(product)
            db.session.flush()

            total = 0
            for n in range(2):
                qty = random.randint(5, 50)
                total += qty
                db.session.add(ProductBatch(
                    product_id=product.id,
                    batch_number=f'B{i:02d}-{n + 1}',
                    expiry_date=today + timedelta(days=random.randint(5, 400)),
                    quantity=qty,
                ))
            product.stock = total

        db.session.commit()
        click.echo("✅ Demo seed complete.")
