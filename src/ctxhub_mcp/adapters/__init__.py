from .base import BaseAdapter, ResourceSpec, ToolSpec, render
from .salesforce import SalesforceAdapter

__all__ = ["BaseAdapter", "ResourceSpec", "ToolSpec", "render", "SalesforceAdapter"]
