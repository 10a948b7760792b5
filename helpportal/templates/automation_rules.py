"""Jira Automation rule payload builders.

Payloads match what ``POST /automation/public/jira/{cloudId}/rest/v1/rule``
accepts, which is the same shape ``GET /rule/{uuid}`` returns for a working
rule:

- wrapped in ``{"rule": {...}}``
- ``component`` marker on the trigger ("TRIGGER") and on each action ("ACTION")
- ``schemaVersion: 1`` on the trigger and every component
- ``conditions: []`` on both, ``children: []`` on components
- ``actor.actor`` (not ``actor.value``)
- ``ruleScopeARIs`` holding exactly the owning project's ARI

Smart values such as ``{{issue.key}}`` are substituted by Jira when the rule
fires; these builders only emit the placeholder text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from urllib.parse import urlparse

from helpportal.errors import ValidationError

COMMENT_TRIGGER = "jira.issue.event.trigger:commented"
STATUS_CHANGED_TRIGGER = "jira.issue.event.trigger:transitioned"
OUTGOING_WEBHOOK_ACTION = "jira.issue.outgoing.webhook"


@dataclass(frozen=True)
class WebhookRuleOptions:
    cloud_id: str
    project_id: str
    owner_account_id: str
    author_account_id: str
    webhook_url: str

    def validate(self) -> None:
        for field in ("cloud_id", "project_id", "owner_account_id", "author_account_id", "webhook_url"):
            value = getattr(self, field)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{field} is required", field=field)
        parsed = urlparse(self.webhook_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("webhook_url must be an http(s) URL", field="webhook_url")


def build_project_ari(cloud_id: str, project_id: str) -> str:
    return f"ari:cloud:jira:{cloud_id}:project/{project_id}"


def _rule_shell(name: str, opts: WebhookRuleOptions, trigger: dict, components: list[dict]) -> dict:
    return {
        "rule": {
            "name": name,
            "state": "ENABLED",
            "description": "",
            "canOtherRuleTrigger": False,
            "notifyOnError": "FIRSTERROR",
            "authorAccountId": opts.author_account_id,
            "actor": {
                "type": "ACCOUNT_ID",
                "actor": opts.owner_account_id,
            },
            "trigger": {
                "component": "TRIGGER",
                "schemaVersion": 1,
                **trigger,
                "conditions": [],
            },
            "components": [
                {
                    "component": "ACTION",
                    "schemaVersion": 1,
                    **component,
                    "conditions": [],
                    "children": [],
                }
                for component in components
            ],
            "ruleScopeARIs": [build_project_ari(opts.cloud_id, opts.project_id)],
            "labels": [],
            "writeAccessType": "OWNER_ONLY",
            "collaborators": [],
        }
    }


def _webhook_action(webhook_url: str, custom_body: dict) -> dict:
    return {
        "type": OUTGOING_WEBHOOK_ACTION,
        "value": {
            "url": webhook_url,
            "method": "POST",
            "headers": [{"name": "Content-Type", "value": "application/json"}],
            "sendIssue": False,
            "contentType": "custom",
            "customBody": json.dumps(custom_body, indent=2),
        },
    }


def build_comment_webhook_rule(opts: WebhookRuleOptions) -> dict:
    """Comment added -> send webhook."""
    opts.validate()
    project_ari = build_project_ari(opts.cloud_id, opts.project_id)
    custom_body = {
        "webhookEvent": "comment_created",
        "issueKey": "{{issue.key}}",
        "commentId": "{{comment.id}}",
    }
    return _rule_shell(
        "Webhook - Comment Notification",
        opts,
        {
            "type": COMMENT_TRIGGER,
            "value": {
                "eventTypes": [],
                "eventFilters": [project_ari],
            },
        },
        [_webhook_action(opts.webhook_url, custom_body)],
    )


def build_status_changed_webhook_rule(opts: WebhookRuleOptions) -> dict:
    """Issue transitioned between statuses -> send webhook."""
    opts.validate()
    project_ari = build_project_ari(opts.cloud_id, opts.project_id)
    custom_body = {
        "webhookEvent": "status_changed",
        "issueKey": "{{issue.key}}",
        "fromStatus": "{{changelog.fromString}}",
        "toStatus": "{{changelog.toString}}",
    }
    return _rule_shell(
        "Webhook - Status Changed",
        opts,
        {
            "type": STATUS_CHANGED_TRIGGER,
            "value": {
                "eventFilters": [project_ari],
                "fromStatus": [],
                "toStatus": [],
            },
        },
        [_webhook_action(opts.webhook_url, custom_body)],
    )


RULE_BUILDERS = {
    "comment": build_comment_webhook_rule,
    "status_changed": build_status_changed_webhook_rule,
}
