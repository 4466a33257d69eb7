"""Create catalogue, watch list and recommendation feedback tables.

Revision ID: 001_create_recommendation_schema
Revises:
Create Date: 2024-11-02

This migration adds:
- genres, anime and anime_genres for the catalogue
- users, user_preferences and user_anime_list for taste and history
- recommendation_feedback and user_interactions for feedback and telemetry
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_create_recommendation_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'genres',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
    )

    op.create_table(
        'anime',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('cover_image', sa.String(500), nullable=True),
        sa.Column('year', sa.Integer, nullable=True),
        sa.Column('type', sa.String(20), nullable=True),
        sa.Column('episodes', sa.Integer, nullable=True),
        sa.Column('average_rating', sa.Float, nullable=True),
        sa.Column('view_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('tags', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_anime_rating', 'anime', ['average_rating'])
    op.create_index('idx_anime_view_count', 'anime', ['view_count'])
    op.create_index('idx_anime_created_at', 'anime', ['created_at'])

    op.create_table(
        'anime_genres',
        sa.Column('anime_id', sa.String(36), sa.ForeignKey('anime.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('genre_id', sa.String(36), sa.ForeignKey('genres.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_index('idx_anime_genres_genre', 'anime_genres', ['genre_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('username', sa.String(100), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'user_preferences',
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('favorite_genres', sa.JSON, nullable=True),
        sa.Column('favorite_tags', sa.JSON, nullable=True),
        sa.Column('discovery_mode', sa.String(20), nullable=False, server_default='balanced'),
        sa.Column('share_data_for_recommendations', sa.Boolean, nullable=False, server_default=sa.false()),
    )

    op.create_table(
        'user_anime_list',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('anime_id', sa.String(36), sa.ForeignKey('anime.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('score', sa.Integer, nullable=True),
        sa.Column('is_favorite', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'anime_id', name='uq_user_anime_list'),
    )
    op.create_index('idx_user_anime_list_user_status', 'user_anime_list', ['user_id', 'status'])
    op.create_index('idx_user_anime_list_anime', 'user_anime_list', ['anime_id'])

    op.create_table(
        'recommendation_feedback',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('anime_id', sa.String(36), sa.ForeignKey('anime.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feedback_type', sa.String(30), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'anime_id', name='uq_recommendation_feedback'),
    )
    op.create_index('idx_recommendation_feedback_user', 'recommendation_feedback', ['user_id', 'feedback_type'])

    op.create_table(
        'user_interactions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('anime_id', sa.String(36), nullable=True),
        sa.Column('action_type', sa.String(30), nullable=False),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('duration', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_user_interactions_user', 'user_interactions', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('user_interactions')
    op.drop_table('recommendation_feedback')
    op.drop_table('user_anime_list')
    op.drop_table('user_preferences')
    op.drop_table('users')
    op.drop_table('anime_genres')
    op.drop_table('anime')
    op.drop_table('genres')
