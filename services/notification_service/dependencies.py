from functools import lru_cache

from shared.config.settings import get_settings
from .gateway import MailerSendGateway, NotificationGateway


@lru_cache
def get_notifier() -> NotificationGateway:
    return MailerSendGateway(get_settings())
