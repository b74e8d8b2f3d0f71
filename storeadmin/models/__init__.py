from .base import Base, Counter, SettingsEntry, utcnow
from .catalog import Category, Product, Tag
from .content import BlogPost, ContentRevision, ScheduledContent, WorkflowTask
from .marketing import (
    ABTest,
    AffiliateLink,
    AmazonProductCache,
    AnalyticsEvent,
    AutomationRun,
    AutomationWorkflow,
    EmailCampaign,
    EmailSegment,
    EmailTemplate,
    KeywordUsage,
    PageSeoScore,
)
from .sales import Customer, Order

__all__ = [
    "Base",
    "Counter",
    "SettingsEntry",
    "utcnow",
    "Category",
    "Product",
    "Tag",
    "BlogPost",
    "ContentRevision",
    "ScheduledContent",
    "WorkflowTask",
    "ABTest",
    "AffiliateLink",
    "AmazonProductCache",
    "AnalyticsEvent",
    "AutomationRun",
    "AutomationWorkflow",
    "EmailCampaign",
    "EmailSegment",
    "EmailTemplate",
    "KeywordUsage",
    "PageSeoScore",
    "Customer",
    "Order",
]
