"""Initial EventSnaps schema

Revision ID: 001
Revises:
Create Date: 2025-03-02 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

FREE_FEATURES = {"gallery": False, "playlist": True, "tv_mode": False, "white_label": False, "max_storage_gb": 0.5}
PRO_FEATURES = {"gallery": True, "playlist": True, "tv_mode": True, "white_label": True, "max_storage_gb": 50}

ENUMS = {
    'eventstatus': ('active', 'expired'),
    'photostatus': ('pending', 'approved', 'rejected'),
    'moderationdecision': ('approve', 'reject'),
    'musicprovider': ('spotify', 'youtube'),
    'queueitemstatus': ('pending', 'played'),
    'subscriptionstatus': ('active', 'trialing', 'past_due', 'canceled'),
    'userrole': ('user', 'admin'),
}


def _enum(name):
    # Types are created up front; moderationdecision is shared by two tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # Plans and accounts
    op.create_table('plans',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('user_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('plan_id', sa.String(length=100), nullable=False),
        sa.Column('status', _enum('subscriptionstatus'), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_user_subscriptions_user_id', 'user_subscriptions', ['user_id'], unique=False)
    op.create_index('idx_user_subscriptions_status', 'user_subscriptions', ['status'], unique=False)

    op.create_table('user_profiles',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('plan_id', sa.String(length=100), nullable=True),
        sa.Column('role', _enum('userrole'), server_default='user', nullable=False),
        sa.Column('custom_logo_url', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('admin_config',
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )

    # Events and photos
    op.create_table('events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('creator_id', sa.String(length=255), nullable=False),
        sa.Column('moderation_enabled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('status', _enum('eventstatus'), server_default='active', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index('idx_events_creator_id', 'events', ['creator_id'], unique=False)
    op.create_index('idx_events_status', 'events', ['status'], unique=False)

    op.create_table('photos',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('storage_path', sa.String(length=500), nullable=False),
        sa.Column('storage_url', sa.String(length=1000), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('status', _enum('photostatus'), server_default='pending', nullable=False),
        sa.Column('uploaded_by', sa.String(length=255), server_default='anonymous', nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_photos_event_id', 'photos', ['event_id'], unique=False)
    op.create_index('idx_photos_status', 'photos', ['status'], unique=False)

    # Moderation
    op.create_table('moderation_queues',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('photo_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('queued_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('gemini_suggestion', _enum('moderationdecision'), nullable=True),
        sa.Column('confidence_score', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('analyzed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['photo_id'], ['photos.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_moderation_queues_photo_id', 'moderation_queues', ['photo_id'], unique=False)
    op.create_index('idx_moderation_queues_processed', 'moderation_queues', ['processed'], unique=False)

    op.create_table('moderation_actions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('photo_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('moderator_id', sa.String(length=255), nullable=False),
        sa.Column('action', _enum('moderationdecision'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('actioned_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['photo_id'], ['photos.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_moderation_actions_photo_id', 'moderation_actions', ['photo_id'], unique=False)
    op.create_index('idx_moderation_actions_moderator_id', 'moderation_actions', ['moderator_id'], unique=False)

    # Jukebox
    op.create_table('jukebox_settings',
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('provider', _enum('musicprovider'), server_default='spotify', nullable=False),
        sa.Column('vibe_filters', sa.JSON(), nullable=True),
        sa.Column('spotify_playlist_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('event_id')
    )

    op.create_table('jukebox_queue',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('track_id', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('artist', sa.String(length=500), nullable=False),
        sa.Column('album_art', sa.String(length=1000), nullable=True),
        sa.Column('preview_url', sa.String(length=1000), nullable=True),
        sa.Column('genre', sa.String(length=100), server_default='unknown', nullable=False),
        sa.Column('votes', sa.Integer(), server_default='1', nullable=False),
        sa.Column('voters', sa.JSON(), nullable=True),
        sa.Column('provider', _enum('musicprovider'), server_default='spotify', nullable=False),
        sa.Column('status', _enum('queueitemstatus'), server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_jukebox_queue_event_status', 'jukebox_queue', ['event_id', 'status'], unique=False)
    op.create_index('idx_jukebox_queue_votes', 'jukebox_queue', ['votes'], unique=False)

    # Seed plans
    plans = sa.table('plans',
        sa.column('id', sa.String),
        sa.column('name', sa.String),
        sa.column('features', sa.JSON),
        sa.column('price', sa.Float),
    )
    op.bulk_insert(plans, [
        {'id': 'free', 'name': 'Free', 'features': FREE_FEATURES, 'price': 0.0},
        {'id': 'pro', 'name': 'Pro', 'features': PRO_FEATURES, 'price': 29.0},
        {'id': 'trial_pro', 'name': 'Pro Trial', 'features': PRO_FEATURES, 'price': 0.0},
    ])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('jukebox_queue')
    op.drop_table('jukebox_settings')
    op.drop_table('moderation_actions')
    op.drop_table('moderation_queues')
    op.drop_table('photos')
    op.drop_table('events')
    op.drop_table('admin_config')
    op.drop_table('user_profiles')
    op.drop_table('user_subscriptions')
    op.drop_table('plans')

    # Drop enum types
    bind = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
