"""Firestore クライアント生成"""
import json
from typing import Optional

from google.cloud import firestore
from google.oauth2 import service_account

from app.core.config import Settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def create_client(credential_json: str = "", project: Optional[str] = None) -> firestore.Client:
    """
    Firestoreクライアントを作成

    Args:
        credential_json: サービスアカウントJSON (平文)。空ならADC (Application Default Credentials)
        project: プロジェクトID。未指定ならサービスアカウントJSONの project_id
    """
    if not credential_json:
        return firestore.Client(project=project or None)

    key_dict = json.loads(credential_json)
    creds = service_account.Credentials.from_service_account_info(key_dict)
    return firestore.Client(credentials=creds, project=project or key_dict.get("project_id"))


def client_from_settings(settings: Settings) -> firestore.Client:
    client = create_client(
        settings.GOOGLE_APPLICATION_CREDENTIALS_JSON,
        settings.GOOGLE_CLOUD_PROJECT,
    )
    logger.info(f"Firestore接続: project={client.project}")
    return client
