import json

import click
from flask import Flask, g
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Behind the platform's reverse proxy: trust one hop of X-Forwarded-*
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # ── Logging ───────────────────────────────────────────────────
    from storefront.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from storefront.pricing import pricing as pricing_blueprint
    app.register_blueprint(pricing_blueprint, url_prefix='/pricing')

    from storefront.cart import cart as cart_blueprint
    app.register_blueprint(cart_blueprint, url_prefix='/cart')

    from storefront.checkout import checkout as checkout_blueprint
    app.register_blueprint(checkout_blueprint, url_prefix='/checkout')

    from storefront.orders import orders as orders_blueprint
    app.register_blueprint(orders_blueprint, url_prefix='/orders')

    from storefront.loyalty import loyalty as loyalty_blueprint
    app.register_blueprint(loyalty_blueprint, url_prefix='/loyalty')

    from storefront.admin import admin as admin_blueprint
    app.register_blueprint(admin_blueprint, url_prefix='/admin')

    # ── Request id ────────────────────────────────────────────────
    from storefront.utils.api import get_request_id

    @app.before_request
    def assign_request_id():
        g.pop('request_id', None)
        get_request_id()

    @app.after_request
    def echo_request_id(response):
        response.headers['X-Request-Id'] = get_request_id()
        return response

    # ── Error Handlers ────────────────────────────────────────────
    register_error_handlers(app)

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def register_error_handlers(app):
    """Every error leaves as `{"ok": false, "error", "code", "requestId"}`."""
    from storefront.errors import StorefrontError
    from storefront.utils.api import json_error

    @app.errorhandler(StorefrontError)
    def storefront_error(exc):
        if exc.status_code >= 500:
            app.logger.error(f"{exc.code}: {exc.message}")
        return json_error(exc.status_code, exc.message, code=exc.code)

    @app.errorhandler(HTTPException)
    def http_error(exc):
        code = (exc.name or 'error').lower().replace(' ', '_')
        return json_error(exc.code or 500, exc.description or exc.name, code=code)

    @app.errorhandler(500)
    def internal_error(exc):
        db.session.rollback()
        app.logger.exception(f"Unhandled error: {exc!r}")
        return json_error(500, 'Internal server error.', code='internal_error')


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables and seed the order sequence for this year."""
        from datetime import date
        from storefront.orders.models import OrderSequence

        db.create_all()
        click.echo('Database tables created.')

        # Pre-seed the sequence row so the first order of the year
        # doesn't have to INSERT it inside the webhook transaction.
        year = date.today().year
        if not db.session.get(OrderSequence, year):
            db.session.add(OrderSequence(year=year, last_seq=0))
            db.session.commit()
            click.echo(f'Order sequence seeded for {year} (starts at 0).')
        else:
            click.echo(f'Order sequence for {year} already exists.')

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show current order sequence counters (diagnostic)."""
        from storefront.orders.models import OrderSequence
        from storefront.orders.numbering import format_order_number
        rows = OrderSequence.query.order_by(OrderSequence.year.desc()).all()
        if not rows:
            click.echo('No sequence rows found. Run flask init-db first.')
            return
        click.echo(f'{"Year":<8} {"Last Seq":<12} {"Next Order"}')
        click.echo('─' * 35)
        for row in rows:
            next_no = format_order_number(row.year, row.last_seq + 1)
            click.echo(f'{row.year:<8} {row.last_seq:<12} {next_no}')

    @app.cli.command('import-variants')
    @click.argument('matrix_file', type=click.File('r'))
    @click.option('--product-id', required=True, type=int, help='Vendor product id')
    @click.option('--store', default='US', show_default=True,
                  help='Store (US / CA / en_us / en_ca)')
    def import_variants(matrix_file, product_id, store):
        """
        Load a vendor pricing-matrix JSON export into the local variant table.
        Existing rows for the same (product, store, key) are replaced.
        """
        from datetime import datetime
        from decimal import Decimal
        from storefront.pricing.models import ProductVariant
        from storefront.pricing.stores import store_to_store_code
        from storefront.pricing.variants import build_pricing_index

        try:
            rows = json.load(matrix_file)
        except ValueError as exc:
            raise click.ClickException(f'Invalid JSON: {exc}')
        if isinstance(rows, dict):
            rows = rows.get('data') or rows.get('rows') or [rows]

        store_code = store_to_store_code(store)
        index = build_pricing_index(rows)
        if not index:
            raise click.ClickException('No priced variants found in the file.')

        now = datetime.utcnow()
        for key, hit in index.items():
            db.session.merge(ProductVariant(
                product_id=product_id,
                store_code=store_code,
                key=key,
                option_ids=[int(part) for part in key.split('-')],
                price=Decimal(str(hit.price)),
                package_info=hit.package_info,
                updated_at=now,
            ))
        db.session.commit()
        click.echo(f'Imported {len(index)} variants for product {product_id} ({store_code}).')
