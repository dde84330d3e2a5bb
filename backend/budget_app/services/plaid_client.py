"""
Plaid API Client Service

Handles all interactions with Plaid API for account linking and transaction syncing.
"""
import logging
from typing import Optional, Dict, List, Any
from datetime import datetime, date, timezone

import plaid
from plaid.api import plaid_api
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.exceptions import ApiException

from budget_app.config import settings

logger = logging.getLogger(__name__)


def _enum_value(value):
    """Plaid SDK returns enum-like objects for types; unwrap them to strings."""
    if value is not None and hasattr(value, 'value'):
        return value.value
    if value is not None:
        return str(value)
    return None


class PlaidClient:
    """Client for interacting with Plaid API"""

    def __init__(self):
        self.client_id = settings.PLAID_CLIENT_ID
        self.secret = settings.PLAID_SECRET
        self.environment = self._get_environment()
        self.client = None

        if self._is_enabled():
            self._initialize_client()

    def _is_enabled(self) -> bool:
        """Check if Plaid is properly configured"""
        return bool(self.client_id and self.secret)

    def _get_environment(self) -> str:
        """Map environment string to Plaid host"""
        env_map = {
            "sandbox": plaid.Environment.Sandbox,
            "production": plaid.Environment.Production,
        }
        # Older SDKs still ship a Development host
        development = getattr(plaid.Environment, "Development", None)
        if development:
            env_map["development"] = development
        return env_map.get(settings.PLAID_ENVIRONMENT, plaid.Environment.Sandbox)

    def _initialize_client(self):
        """Initialize Plaid API client"""
        try:
            configuration = plaid.Configuration(
                host=self.environment,
                api_key={
                    'clientId': self.client_id,
                    'secret': self.secret,
                }
            )
            api_client = plaid.ApiClient(configuration)
            self.client = plaid_api.PlaidApi(api_client)
            logger.info(f"Plaid client initialized with environment: {settings.PLAID_ENVIRONMENT}")
        except Exception as e:
            logger.error(f"Failed to initialize Plaid client: {e}")
            raise

    def create_link_token(self, user_id: str, client_name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Create a link token for Plaid Link initialization

        Args:
            user_id: Your application's user ID
            client_name: Display name for your application

        Returns:
            Dictionary with link_token and expiration
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request = LinkTokenCreateRequest(
                user=LinkTokenCreateRequestUser(client_user_id=str(user_id)),
                client_name=client_name or settings.PLAID_CLIENT_NAME,
                products=[Products("transactions")],
                country_codes=[CountryCode("US")],
                language="en",
            )
            response = self.client.link_token_create(request)

            expiration = response['expiration']
            if isinstance(expiration, datetime):
                expiration = expiration.isoformat()

            return {
                "link_token": response['link_token'],
                "expiration": expiration,
            }
        except ApiException as e:
            logger.error(f"Failed to create link token for user {user_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error creating link token: {e}")
            return None

    def exchange_public_token(self, public_token: str) -> Optional[Dict[str, Any]]:
        """
        Exchange public token for access token and item ID

        Returns:
            Dictionary with access_token and item_id
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request = ItemPublicTokenExchangeRequest(public_token=public_token)
            response = self.client.item_public_token_exchange(request)

            return {
                "access_token": response['access_token'],
                "item_id": response['item_id'],
            }
        except ApiException as e:
            logger.error(f"Failed to exchange public token: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error exchanging public token: {e}")
            return None

    def get_accounts(self, access_token: str) -> Optional[List[Dict[str, Any]]]:
        """
        Get accounts associated with an access token

        Returns:
            List of formatted accounts
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request = AccountsGetRequest(access_token=access_token)
            response = self.client.accounts_get(request)
            return [self._format_account(acc) for acc in response['accounts']]
        except ApiException as e:
            logger.error(f"Failed to get accounts: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error getting accounts: {e}")
            return None

    def sync_transactions(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 500
    ) -> Optional[Dict[str, Any]]:
        """
        Sync transactions using cursor-based pagination

        Args:
            access_token: Plaid access token
            cursor: Cursor for incremental updates (None for initial sync)
            count: Number of transactions to fetch (max 500)

        Returns:
            Dictionary with added, modified, removed transactions and next cursor
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request_args = {
                "access_token": access_token,
                "count": min(count, 500),
            }
            if cursor:
                request_args["cursor"] = cursor

            request = TransactionsSyncRequest(**request_args)
            response = self.client.transactions_sync(request)

            logger.info(
                "Plaid sync page: added=%d modified=%d removed=%d has_more=%s",
                len(response.get('added', [])),
                len(response.get('modified', [])),
                len(response.get('removed', [])),
                response['has_more'],
            )

            return {
                "added": [self._format_transaction(txn) for txn in response.get('added', [])],
                "modified": [self._format_transaction(txn) for txn in response.get('modified', [])],
                "removed": [txn['transaction_id'] for txn in response.get('removed', [])],
                "next_cursor": response['next_cursor'],
                "has_more": response['has_more'],
            }
        except ApiException as e:
            logger.error(f"Failed to sync transactions: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error syncing transactions: {e}")
            return None

    def remove_item(self, access_token: str) -> bool:
        """
        Remove (disconnect) a Plaid item

        Returns:
            True if successful, False otherwise
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return False

        try:
            request = ItemRemoveRequest(access_token=access_token)
            self.client.item_remove(request)
            logger.info("Successfully removed Plaid item")
            return True
        except ApiException as e:
            logger.error(f"Failed to remove item: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error removing item: {e}")
            return False

    def _format_account(self, account: Dict[str, Any]) -> Dict[str, Any]:
        """Format Plaid account object for our use"""
        balances = account['balances']
        return {
            "account_id": account['account_id'],
            "name": account['name'],
            "official_name": account.get('official_name'),
            "mask": account.get('mask'),
            "type": _enum_value(account['type']),
            "subtype": _enum_value(account.get('subtype')),
            "balances": {
                "available": balances.get('available'),
                "current": balances.get('current'),
                "limit": balances.get('limit'),
                "currency": balances.get('iso_currency_code') or 'USD',
            }
        }

    def _format_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        """Format Plaid transaction object for our use"""
        location = transaction.get('location') or {}
        pfc = transaction.get('personal_finance_category')

        categories = list(transaction.get('category') or [])
        if not categories and pfc:
            categories = [pfc.get('primary')]

        txn_date = transaction['date']
        txn_datetime = transaction.get('datetime') or transaction.get('authorized_datetime')
        if txn_datetime is None and isinstance(txn_date, date):
            txn_datetime = datetime(txn_date.year, txn_date.month, txn_date.day)
        if isinstance(txn_datetime, datetime) and txn_datetime.tzinfo is not None:
            # Stored as naive UTC
            txn_datetime = txn_datetime.astimezone(timezone.utc).replace(tzinfo=None)

        return {
            "transaction_id": transaction['transaction_id'],
            "account_id": transaction['account_id'],
            "amount": transaction['amount'],
            "date": txn_datetime or txn_date,
            "name": transaction.get('name'),
            "merchant_name": transaction.get('merchant_name'),
            "category": [c for c in categories if c],
            "pending": transaction.get('pending', False),
            "location": {
                "city": location.get('city'),
                "region": location.get('region'),
                "country": location.get('country'),
            },
            "iso_currency_code": transaction.get('iso_currency_code') or 'USD',
        }


# Singleton instance
plaid_client = PlaidClient()
