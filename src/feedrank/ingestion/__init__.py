"""Ingestion — source fetching, normalization, and identity resolution."""

from feedrank.ingestion.channel_adapter import ChannelFeedAdapter
from feedrank.ingestion.github_adapter import GitHubSearchAdapter
from feedrank.ingestion.hub_adapter import ModelHubAdapter
from feedrank.ingestion.microblog_adapter import MicroblogAdapter
from feedrank.ingestion.registry import register_adapter
from feedrank.ingestion.rss_adapter import RSSAdapter

register_adapter("syndication", RSSAdapter)
register_adapter("channel", ChannelFeedAdapter)
register_adapter("hub", ModelHubAdapter)
register_adapter("repository", GitHubSearchAdapter)
register_adapter("microblog", MicroblogAdapter)
