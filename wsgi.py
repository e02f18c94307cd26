from tillpoint import create_app
import os

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# ── AUTO-MIGRATION ──
# Bring the local ledger (and the remote bind on a sync server) up to date
from tillpoint.migration import run_auto_migration
run_auto_migration(app)

# ── EMBEDDED SYNC WORKER ──
# Tills push from inside the web process; the sync server leaves this off
if os.environ.get('SYNC_EMBEDDED_WORKER', '').lower() in ('1', 'true', 'yes'):
    from tillpoint.sync.scheduler import SyncScheduler
    scheduler = SyncScheduler.from_app(app)
    scheduler.start()

if __name__ == "__main__":
    app.run()
