"""
数据库连接模块

管理数据库引擎的创建。表结构通过 Alembic 迁移管理，不要在这里创建表。
种子数据（印刷服务选项目录）见 storyprint/initial_data.py。
"""
from sqlmodel import create_engine

from storyprint.core.config import settings

# pool_pre_ping: 回调/对账请求间隔可能很长，避免拿到已断开的连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)
