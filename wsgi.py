import os

from storefront import create_app, db

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# ── AUTO-INIT for platforms without shell access ──
# Creates any missing tables on startup; existing tables are left as-is.
# Order sequence rows are created lazily by the first order of each year.
with app.app_context():
    db.create_all()
    app.logger.info(f"Storefront ready ({config_name})")

if __name__ == "__main__":
    app.run()
