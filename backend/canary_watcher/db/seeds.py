"""
Seed data: canary definitions and the Tier-0 / Tier-1 / Discovery source registry
"""
from canary_watcher.models import CanaryDefinition


CANARY_DEFINITIONS = [
    CanaryDefinition(
        id='arc_agi',
        name='ARC-AGI',
        description='Tasks requiring genuine understanding and generalization.',
        axes_watched=['reasoning', 'learning_efficiency'],
        thresholds={'green': '>50%', 'yellow': '10-50%', 'red': '<10%'},
        display_order=0,
    ),
    CanaryDefinition(
        id='long_horizon',
        name='Long-horizon planning',
        description='Multi-step planning and tool use over extended horizons.',
        axes_watched=['planning', 'tool_use'],
        thresholds={'green': 'robust', 'yellow': 'partial', 'red': 'minimal'},
        display_order=1,
    ),
    CanaryDefinition(
        id='safety_canary',
        name='Alignment & safety',
        description='Indicators of alignment research progress and safety-relevant capabilities.',
        axes_watched=['alignment_safety', 'robustness'],
        thresholds={'green': 'improving', 'yellow': 'stable', 'red': 'concerning'},
        display_order=2,
    ),
    CanaryDefinition(
        id='self_improvement',
        name='Recursive self-improvement',
        description='Signals suggesting improved ability to modify own code or improve capabilities autonomously.',
        axes_watched=['learning_efficiency', 'tool_use'],
        thresholds={'green': 'none observed', 'yellow': 'early signals', 'red': 'concerning'},
        display_order=11,
    ),
    CanaryDefinition(
        id='economic_impact',
        name='Economic displacement',
        description='Indicators of AI capability to displace human labor in knowledge work.',
        axes_watched=['reasoning', 'tool_use'],
        thresholds={'green': 'contained', 'yellow': 'partial', 'red': 'significant'},
        display_order=12,
    ),
    CanaryDefinition(
        id='alignment_coverage',
        name='Alignment eval coverage',
        description='How well current autonomy levels are being evaluated for safety and alignment.',
        axes_watched=['alignment_safety'],
        thresholds={'green': 'well-tested', 'yellow': 'partial coverage', 'red': 'gaps'},
        display_order=13,
    ),
    CanaryDefinition(
        id='deception',
        name='Deception detection',
        description='Capability to detect deception and manipulation in model outputs.',
        axes_watched=['social_cognition', 'alignment_safety'],
        thresholds={'green': 'robust', 'yellow': 'partial', 'red': 'weak'},
        display_order=14,
    ),
    CanaryDefinition(
        id='tool_creation',
        name='Tool creation capability',
        description='Ability to create new tools, code, and extensions autonomously.',
        axes_watched=['tool_use', 'reasoning'],
        thresholds={'green': 'controlled', 'yellow': 'emerging', 'red': 'autonomous'},
        display_order=15,
    ),
]


def _source(name, url, tier, trust_weight, cadence, domain_type, source_type, query_config=None):
    return {
        'name': name,
        'url': url,
        'tier': tier,
        'trust_weight': trust_weight,
        'cadence': cadence,
        'domain_type': domain_type,
        'source_type': source_type,
        'query_config': query_config or {},
    }


SEED_SOURCES = [
    # Tier-0
    _source('Stanford HAI', 'https://hai.stanford.edu/news', 'TIER_0', 0.95, 'weekly', 'research', 'curated'),
    _source('METR', 'https://metr.org/blog', 'TIER_0', 0.95, 'weekly', 'evaluation', 'rss'),
    _source('ARC Prize', 'https://arcprize.org/blog', 'TIER_0', 0.9, 'monthly', 'evaluation', 'rss'),
    _source('OECD AI', 'https://www.oecd.org/digital/artificial-intelligence/', 'TIER_0', 0.9,
            'monthly', 'policy', 'curated'),
    _source('DeepMind Research', 'https://www.deepmind.com/blog', 'TIER_0', 0.95, 'weekly', 'research', 'rss'),
    _source('OpenAI Research', 'https://openai.com/research', 'TIER_0', 0.95, 'weekly', 'research', 'curated'),
    _source('Anthropic Research', 'https://www.anthropic.com/research', 'TIER_0', 0.95,
            'weekly', 'research', 'curated'),
    _source('Epoch AI', 'https://epochai.org/blog', 'TIER_0', 0.85, 'weekly', 'research', 'rss'),
    _source('UK AISI', 'https://www.aisi.gov.uk/', 'TIER_0', 0.9, 'monthly', 'policy', 'curated'),
    _source('arXiv cs.AI', 'http://arxiv.org/list/cs.AI/recent', 'TIER_0', 0.8, 'daily', 'research', 'curated',
            {'categories': ['cs.AI', 'cs.LG'], 'keywords': ['AGI', 'capability', 'benchmark']}),
    # Tier-1
    _source('LessWrong', 'https://www.lesswrong.com/feed', 'TIER_1', 0.6, 'daily', 'commentary', 'rss'),
    _source('Alignment Forum', 'https://www.alignmentforum.org/feed', 'TIER_1', 0.65, 'daily', 'commentary', 'rss'),
    _source('Import AI newsletter', 'https://jack-clark.net/', 'TIER_1', 0.6, 'weekly', 'commentary', 'curated'),
    _source('Center for AI Safety', 'https://www.safe.ai/blog', 'TIER_1', 0.65, 'weekly', 'commentary', 'rss'),
    # Discovery tier - web search through OpenRouter
    _source('Perplexity AGI Search', 'https://openrouter.ai/perplexity/sonar', 'DISCOVERY', 0.4,
            'daily', 'research', 'search',
            {'keywords': ['AGI evaluation', 'AI benchmark', 'ARC-AGI', 'frontier model',
                          'AI capability', 'METR evaluation', 'OECD AI']}),
]
