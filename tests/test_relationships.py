import json
import os

from chat_memory.models.core import RelationshipDelta
from chat_memory.services.relationships import RelationshipStore
from chat_memory.services.retrieval import format_context


def test_new_user_starts_at_delta(relationships_config):
    ledger = RelationshipStore(relationships_config)

    assert ledger.update_sentiment('1', 'alice', 3) == 3
    entry = ledger.get('1')
    assert entry.interaction_count == 1
    assert entry.last_interaction.endswith('Z')


def test_deltas_accumulate_and_persist(relationships_config):
    ledger = RelationshipStore(relationships_config)
    ledger.update_sentiment('1', 'alice', 3)
    ledger.update_sentiment('1', 'alice_renamed', -5)

    reloaded = RelationshipStore(relationships_config)
    entry = reloaded.get('1')
    assert entry.affinity_score == -2
    assert entry.interaction_count == 2
    assert entry.username == 'alice_renamed'
    assert reloaded.get_affinity('nobody') == 0
    assert not os.path.exists(reloaded.path + '.tmp')


def test_corrupt_file_loads_as_empty(relationships_config):
    os.makedirs(relationships_config.data_dir, exist_ok=True)
    path = os.path.join(relationships_config.data_dir, 'relationships.json')
    with open(path, 'w', encoding='utf-8') as f:
        f.write('{not json')

    ledger = RelationshipStore(relationships_config)
    assert ledger.all() == []
    ledger.update_sentiment('1', 'alice', 1)
    with open(path, 'r', encoding='utf-8') as f:
        assert json.load(f)[0]['user_id'] == '1'


def test_keyed_object_format_is_accepted(relationships_config):
    os.makedirs(relationships_config.data_dir, exist_ok=True)
    with open(os.path.join(relationships_config.data_dir, 'relationships.json'), 'w', encoding='utf-8') as f:
        json.dump({'42': {'username': 'bob', 'affinity_score': 7, 'last_interaction': '', 'interaction_count': 4}}, f)

    entry = RelationshipStore(relationships_config).get('42')
    assert entry.username == 'bob'
    assert entry.affinity_score == 7


def test_apply_updates_username_fallback(relationships_config):
    ledger = RelationshipStore(relationships_config)
    ledger.update_sentiment('1', 'alice', 1)

    ledger.apply_updates([RelationshipDelta('1', 2), RelationshipDelta('2', -1), RelationshipDelta('3', 4)], {'3': 'carol'})

    assert ledger.get('1').username == 'alice'
    assert ledger.get('1').affinity_score == 3
    assert ledger.get('2').username == 'Unknown'
    assert ledger.get('3').username == 'carol'


def test_top_and_bottom(relationships_config):
    ledger = RelationshipStore(relationships_config)
    for user_id, delta in [('a', 5), ('b', -4), ('c', 1)]:
        ledger.update_sentiment(user_id, user_id, delta)

    assert [e.user_id for e in ledger.top(2)] == ['a', 'c']
    assert [e.user_id for e in ledger.bottom(1)] == ['b']


def test_numeric_last_interaction_still_builds_context(relationships_config):
    os.makedirs(relationships_config.data_dir, exist_ok=True)
    with open(os.path.join(relationships_config.data_dir, 'relationships.json'), 'w', encoding='utf-8') as f:
        json.dump([{'user_id': 7, 'username': 'dana', 'affinity_score': 2, 'last_interaction': 1700000000000, 'interaction_count': 1}], f)

    entry = RelationshipStore(relationships_config).get('7')

    assert entry.last_interaction == '1700000000000'
    context = format_context(entry, [], [])
    assert '## Relationship with dana' in context
