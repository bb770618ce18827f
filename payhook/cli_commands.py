"""
Flask CLI commands for operating the webhook reconciler.

Commands:
- flask init-db: Create all tables
- flask webhooks-replay: Re-run stored, unprocessed webhook events
- flask outbox-retry: Retry pending or failed side effects
"""

import click
from payhook.database import get_session, create_all
from payhook.models import WebhookEvent
from payhook.services.event_ledger import EventLedger
from payhook.services.event_router import process_event, side_effect_ids, deliver_side_effects, DuplicateDelivery
from payhook.services.outbox_service import deliver_pending
from payhook.services.square_client import get_square_client


def _replay(session, event, order_client):
    """Process one stored event and print the outcome. Returns the status value."""
    event_id = event.id
    external_event_id = event.external_event_id
    ledger = EventLedger(session, event.provider)

    try:
        result = process_event(
            session,
            ledger,
            event_id,
            event.event_type,
            external_event_id=external_event_id,
            order_client=order_client,
        )
    except DuplicateDelivery:
        click.echo(click.style(f'⚠️  Webhook event #{event_id} was processed concurrently', fg='yellow'))
        return 'duplicate'

    deliver_side_effects(session, side_effect_ids(result), external_event_id)

    status = result.status.value
    color = {'success': 'green', 'skipped': 'yellow'}.get(status, 'red')
    click.echo(click.style(f'#{event_id} {status}: {result.message}', fg=color))
    return status


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_all()
        click.echo(click.style('✅ Database tables created', fg='green'))

    @app.cli.command('webhooks-replay')
    @click.argument('event_id', type=int, required=False)
    @click.option('--all', 'replay_all', is_flag=True, help='Replay every unprocessed event of the provider')
    @click.option('--provider', default='square', show_default=True, help='Provider for --all')
    @click.option('--limit', default=50, show_default=True, help='Max events to replay with --all')
    def webhooks_replay(event_id, replay_all, provider, limit):
        """Re-dispatch stored webhook events that have not been processed yet."""
        session = get_session()
        order_client = get_square_client()

        if replay_all:
            if event_id is not None:
                raise click.UsageError('Pass either EVENT_ID or --all, not both')
            events = EventLedger(session, provider).unprocessed(limit)
            if not events:
                click.echo(f'No unprocessed {provider} webhook events')
                return
            statuses = [_replay(session, event, order_client) for event in events]
            failed = statuses.count('failed')
            click.echo(f'Replayed {len(statuses)} events, {failed} failed')
            if failed:
                raise SystemExit(1)
            return

        if event_id is None:
            raise click.UsageError('Pass an EVENT_ID or --all')

        event = session.query(WebhookEvent).filter_by(id=event_id).first()
        if event is None:
            click.echo(click.style(f'❌ Webhook event #{event_id} not found', fg='red'))
            raise SystemExit(1)

        if event.is_processed:
            click.echo(click.style(f'⚠️  Webhook event #{event_id} is already processed', fg='yellow'))
            return

        if _replay(session, event, order_client) == 'failed':
            raise SystemExit(1)

    @app.cli.command('outbox-retry')
    @click.option('--limit', default=50, show_default=True, help='Max messages to attempt')
    def outbox_retry(limit):
        """Retry pending or failed receipt emails and accounting payments."""
        session = get_session()
        counts = deliver_pending(session, limit=limit)
        click.echo(f"Outbox: {counts['sent']} sent, {counts['failed']} failed")
