from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from requests.utils import quote

from ctxhub_common.errors import AuthenticationFailed, UpstreamError
from ctxhub_common.http_client import HttpClient, error_message
from ctxhub_config.settings import salesforce_api_version, salesforce_login_url
from .base import BaseAdapter, ResourceSpec, ToolSpec

logger = logging.getLogger(__name__)

# Fields kept per sobject in the schema resource.
_SOBJECT_FIELDS = ("name", "label", "custom", "createable", "updateable", "deletable", "queryable")


class SalesforceCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    security_token: str = Field(default="", alias="securityToken")
    login_url: Optional[str] = Field(default=None, alias="loginUrl")


@dataclass(frozen=True)
class SalesforceSession:
    instance_url: str
    access_token: str
    api_version: str

    def url(self, path: str) -> str:
        return f"{self.instance_url.rstrip('/')}/services/data/v{self.api_version}/{path.lstrip('/')}"

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}


# ---- tool parameter models (their JSON Schema is the published inputSchema) ----
class QueryRecordsParams(BaseModel):
    soql: str = Field(min_length=1, description="SOQL query to execute")
    limit: Optional[int] = Field(default=None, ge=1, description="Maximum number of records to return")


class GetRecordParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_type: str = Field(
        alias="objectType",
        min_length=1,
        description="Salesforce object type (e.g., Account, Contact, Opportunity)",
    )
    record_id: str = Field(alias="recordId", min_length=1, description="ID of the record to retrieve")
    fields: Optional[List[str]] = Field(default=None, description="Fields to retrieve (optional)")


class DescribeObjectParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_type: str = Field(
        alias="objectType",
        min_length=1,
        description="Salesforce object type (e.g., Account, Contact, Opportunity)",
    )


class SalesforceAdapter(BaseAdapter):
    """Capability adapter over the Salesforce REST API (OAuth2 username-password flow)."""

    NAME = "Salesforce"
    VERSION = "1.0.0"

    TOOLS = (
        ToolSpec(
            name="query_records",
            description="Execute a SOQL query to retrieve Salesforce records",
            params=QueryRecordsParams,
            handler="_query_records",
        ),
        ToolSpec(
            name="get_record",
            description="Retrieve a single Salesforce record by ID",
            params=GetRecordParams,
            handler="_get_record",
        ),
        ToolSpec(
            name="describe_object",
            description="Get metadata about a Salesforce object",
            params=DescribeObjectParams,
            handler="_describe_object",
        ),
    )

    RESOURCES = (
        ResourceSpec(
            name="schema",
            description="Salesforce schema information including objects and their fields",
            locator="schema",
            reader="_read_schema",
        ),
        ResourceSpec(
            name="recent_items",
            description="Recently accessed items in Salesforce",
            locator="recent_items",
            reader="_read_recent_items",
        ),
    )

    def __init__(
        self,
        credentials: Optional[Mapping[str, Any]] = None,
        *,
        http: Optional[HttpClient] = None,
        cache_size: Optional[int] = None,
    ) -> None:
        super().__init__(credentials, cache_size=cache_size)
        self._http = http or HttpClient()

    def _open_session(self) -> SalesforceSession:
        try:
            creds = SalesforceCredentials.model_validate(self._credentials)
        except ValidationError as e:
            missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise AuthenticationFailed(f"Salesforce credentials incomplete: {', '.join(missing)}") from e

        login_url = (creds.login_url or salesforce_login_url()).rstrip("/")
        try:
            token = self._http.post_json(
                f"{login_url}/services/oauth2/token",
                data={
                    "grant_type": "password",
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "username": creds.username,
                    "password": creds.password + creds.security_token,
                },
            )
        except requests.RequestException as e:
            raise AuthenticationFailed(f"Failed to authenticate with Salesforce: {error_message(e)}") from e

        if not isinstance(token, dict) or not token.get("access_token") or not token.get("instance_url"):
            raise AuthenticationFailed("Failed to authenticate with Salesforce: incomplete token response")

        return SalesforceSession(
            instance_url=str(token["instance_url"]),
            access_token=str(token["access_token"]),
            api_version=salesforce_api_version(),
        )

    def _get(self, session: SalesforceSession, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            return self._http.get_json(session.url(path), headers=session.headers(), params=params)
        except requests.RequestException as e:
            raise UpstreamError(error_message(e), path=path) from e

    # ---- resources ----------------------------------------------------------
    def _read_schema(self, session: SalesforceSession) -> Dict[str, Any]:
        result = self._get(session, "sobjects/")
        return {
            "encoding": result.get("encoding"),
            "maxBatchSize": result.get("maxBatchSize"),
            "sobjects": [
                {k: obj.get(k) for k in _SOBJECT_FIELDS}
                for obj in result.get("sobjects", [])
                if isinstance(obj, dict)
            ],
        }

    def _read_recent_items(self, session: SalesforceSession) -> Any:
        return self._get(session, "recent/")

    # ---- tools --------------------------------------------------------------
    def _query_records(self, session: SalesforceSession, params: QueryRecordsParams) -> Dict[str, Any]:
        soql = params.soql
        if params.limit and "limit" not in soql.lower():
            soql = f"{soql} LIMIT {params.limit}"
        result = self._get(session, "query/", params={"q": soql})
        return {"totalSize": result.get("totalSize", 0), "records": result.get("records", [])}

    def _get_record(self, session: SalesforceSession, params: GetRecordParams) -> Any:
        path = f"sobjects/{quote(params.object_type, safe='')}/{quote(params.record_id, safe='')}"
        query = {"fields": ",".join(params.fields)} if params.fields else None
        return self._get(session, path, params=query)

    def _describe_object(self, session: SalesforceSession, params: DescribeObjectParams) -> Any:
        return self._metadata.get_or_load(
            params.object_type,
            lambda object_type: self._get(session, f"sobjects/{quote(object_type, safe='')}/describe/"),
        )
