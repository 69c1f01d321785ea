"""create user, lobby, game, player and move tables

Revision ID: 3c9a1f7e2b10
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9a1f7e2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'lobby',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('title', sa.String(length=128), nullable=False),
        sa.Column('game_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('host_id', sa.String(length=36), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_lobby_status', 'lobby', ['status'])
    op.create_index('ix_lobby_host_id', 'lobby', ['host_id'])

    op.create_table(
        'game',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('lobby_id', sa.String(length=36), sa.ForeignKey('lobby.id'), nullable=False),
        sa.Column('game_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('winning_value', sa.String(length=64), nullable=True),
        sa.Column('outcome', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_game_lobby_id', 'game', ['lobby_id'], unique=True)
    op.create_index('ix_game_status', 'game', ['status'])

    op.create_table(
        'player',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('lobby_id', sa.String(length=36), sa.ForeignKey('lobby.id'), nullable=False),
        sa.Column('game_id', sa.String(length=36), sa.ForeignKey('game.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_host', sa.Boolean(), nullable=False),
        sa.Column('is_ready', sa.Boolean(), nullable=False),
        sa.Column('secret_value', sa.String(length=64), nullable=True),
        sa.Column('is_connected', sa.Boolean(), nullable=False),
        sa.Column('connection_id', sa.String(length=64), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('eliminated', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('last_active_at', sa.DateTime(), nullable=False),
        sa.Column('left_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'lobby_id', name='uq_player_user_lobby'),
    )
    op.create_index('ix_player_user_id', 'player', ['user_id'])
    op.create_index('ix_player_lobby_id', 'player', ['lobby_id'])
    op.create_index('ix_player_game_id', 'player', ['game_id'])

    op.create_table(
        'move',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('game_id', sa.String(length=36), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('player_id', sa.String(length=36), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('move_type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.String(length=64), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('game_id', 'seq', name='uq_move_game_seq'),
    )
    op.create_index('ix_move_game_id', 'move', ['game_id'])
    op.create_index('ix_move_player_id', 'move', ['player_id'])


def downgrade():
    op.drop_index('ix_move_player_id', table_name='move')
    op.drop_index('ix_move_game_id', table_name='move')
    op.drop_table('move')
    op.drop_index('ix_player_game_id', table_name='player')
    op.drop_index('ix_player_lobby_id', table_name='player')
    op.drop_index('ix_player_user_id', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_game_status', table_name='game')
    op.drop_index('ix_game_lobby_id', table_name='game')
    op.drop_table('game')
    op.drop_index('ix_lobby_host_id', table_name='lobby')
    op.drop_index('ix_lobby_status', table_name='lobby')
    op.drop_table('lobby')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
