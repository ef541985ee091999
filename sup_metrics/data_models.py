"""
Read-side views over a committed unified scores or distribution snapshot.

Everything here is synchronous and pure: the snapshot passed in is never
modified, and the member order of the snapshot is kept.
"""

def dao_members_count(members):
    return len(members)

def total_delegated_score(members):
    return sum(member.get('delegatedVp') or 0 for member in members.values())

def per_delegate_scores(members):
    return [{'address': address,
             'score': member['ownVp'] + member['delegatedVp'],
             'delegatedScore': member['delegatedVp'],
             'nrDelegations': member.get('nrDelegators', 0)}
            for address, member in members.items()
            if (member.get('delegatedVp') or 0) > 0]

def dao_member(address, member):

    delegated_vp = member.get('delegatedVp') or 0

    is_delegate = None
    if delegated_vp:
        is_delegate = {'delegatedVotingPower': delegated_vp,
                       'nrDelegators': member.get('nrDelegators', 0)}

    return {
        'address': address,
        'locker': member.get('locker'),
        'votingPower': member['ownVp'],
        'hasDelegate': member.get('delegate'),
        'isDelegate': is_delegate,
    }

def dao_members(members):
    return [dao_member(address, member) for address, member in members.items()]

def dao_members_with_filters(members, min_voting_power=0, include_all_delegates=False):
    """
    Members with own voting power of at least `min_voting_power`.  With
    `include_all_delegates`, delegates are kept regardless of their own power.
    """

    all_members = dao_members(members)

    def keep(member):
        if include_all_delegates and member['isDelegate']:
            return True
        return member['votingPower'] >= min_voting_power

    return {
        'totalMembersCount': len(all_members),
        'daoMembers': [member for member in all_members if keep(member)],
    }

def total_score(data):
    return data['totalScore']

def distribution_metrics(data):
    return data
