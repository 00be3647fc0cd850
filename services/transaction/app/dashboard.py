"""
Transaction Service — dashboards

Both dashboards resolve the caller through the user service first:

- manager dashboard : caller must hold the Manager role; totals over all merchants
- keeper dashboard  : caller must be the merchant's keeper; totals for that merchant
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from services.common.clients import MerchantClient, UserClient
from services.common.errors import Forbidden, NotFound

from . import queries

logger = logging.getLogger(__name__)

MANAGER_ROLE = "Manager"


async def manager_dashboard(session: AsyncSession, user_client: UserClient, user_id: int) -> dict:
    try:
        user = await user_client.get_user(user_id)
    except NotFound as e:
        raise Forbidden("User does not have access to the dashboard") from e
    if MANAGER_ROLE not in user.roles:
        logger.info("[Dashboard] manager_dashboard - user %d is not a manager", user_id)
        raise Forbidden("User does not have access to the dashboard")
    return await queries.dashboard_stats(session)


async def keeper_dashboard(
    session: AsyncSession,
    user_client: UserClient,
    merchant_client: MerchantClient,
    user_id: int,
    merchant_id: int,
) -> dict:
    try:
        await user_client.get_user(user_id)
    except NotFound as e:
        raise Forbidden("User does not have access to the merchant") from e

    merchant = await merchant_client.get_merchant(merchant_id)
    if merchant.keeper_id != user_id:
        logger.info(
            "[Dashboard] keeper_dashboard - user %d is not keeper of merchant %d",
            user_id,
            merchant_id,
        )
        raise Forbidden("User does not have access to the merchant")

    stats = await queries.dashboard_stats(session, merchant_id)
    stats["merchant"] = {"id": merchant.id, "name": merchant.name}
    return stats
