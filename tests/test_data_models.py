import copy

from sup_metrics import data_models

from conftest import A, B, C, D, LOCKER_1

def test_dao_members_count(unified_data):
    assert data_models.dao_members_count(unified_data['members']) == 4

def test_total_delegated_score(unified_data):
    assert data_models.total_delegated_score(unified_data['members']) == 500000

def test_per_delegate_scores(unified_data):
    assert data_models.per_delegate_scores(unified_data['members']) == [
        {'address': D, 'score': 500000, 'delegatedScore': 500000, 'nrDelegations': 2},
    ]

def test_dao_members_projection(unified_data):

    members = data_models.dao_members(unified_data['members'])

    assert [m['address'] for m in members] == [D, A, B, C]
    assert members[0] == {'address': D, 'locker': None, 'votingPower': 0, 'hasDelegate': None,
                          'isDelegate': {'delegatedVotingPower': 500000, 'nrDelegators': 2}}
    assert members[1] == {'address': A, 'locker': LOCKER_1, 'votingPower': 300000, 'hasDelegate': D,
                          'isDelegate': None}

def test_filter_includes_delegates_below_min_vp(unified_data):

    res = data_models.dao_members_with_filters(unified_data['members'], min_voting_power=100000,
                                               include_all_delegates=True)

    assert res['totalMembersCount'] == 4
    assert [m['address'] for m in res['daoMembers']] == [D, A, B]

def test_filter_by_own_voting_power_only(unified_data):

    res = data_models.dao_members_with_filters(unified_data['members'], min_voting_power=100000)

    assert [m['address'] for m in res['daoMembers']] == [A, B]

def test_filter_defaults_keep_everyone(unified_data):

    res = data_models.dao_members_with_filters(unified_data['members'])

    assert [m['address'] for m in res['daoMembers']] == [D, A, B, C]

def test_views_leave_snapshot_untouched(unified_data):

    before = copy.deepcopy(unified_data)

    data_models.dao_members_with_filters(unified_data['members'], 100000, True)
    data_models.per_delegate_scores(unified_data['members'])

    assert unified_data == before

def test_total_score(unified_data):
    assert data_models.total_score(unified_data) == {'totalScore': 1234567, 'poolCount': 3, 'additionalTotalScore': 1000}
