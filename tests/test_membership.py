from core.errors import MutationError
from core.membership import bulk_add_to_list, bulk_remove_from_all_lists


class MembershipClient:
    def __init__(self, membership, fail_lookup=(), fail_update=(), fail_remove=()):
        self.membership = membership
        self.fail_lookup = set(fail_lookup)
        self.fail_update = set(fail_update)
        self.fail_remove = set(fail_remove)
        self.updates = {}
        self.removed = []

    def fetch_membership(self, item_id):
        if item_id in self.fail_lookup:
            raise MutationError(item_id, "lookup HTTP 500")
        return list(self.membership.get(item_id, []))

    def set_membership(self, item_id, codes):
        if item_id in self.fail_update:
            raise MutationError(item_id, "update HTTP 422")
        self.updates[item_id] = codes

    def remove_from_all_lists(self, item_id):
        if item_id in self.fail_remove:
            raise MutationError(item_id, "removal HTTP 500")
        self.removed.append(item_id)


def test_add_merges_with_existing_lists():
    client = MembershipClient({1: ["fav"], 2: ["fav", "later"], 3: []})
    report = bulk_add_to_list(client, [1, 2, 3], "later")

    assert report.succeeded == [1, 2, 3]
    assert report.failed == []
    assert client.updates == {1: ["fav", "later"], 2: ["fav", "later"], 3: ["later"]}


def test_add_is_best_effort():
    client = MembershipClient({}, fail_lookup={2}, fail_update={4})
    report = bulk_add_to_list(client, [1, 2, 3, 4, 5], "fav")

    assert report.succeeded == [1, 3, 5]
    assert report.failed == [2, 4]
    assert report.failed_count == 2
    assert sorted(client.updates) == [1, 3, 5]


def test_remove_is_best_effort():
    client = MembershipClient({}, fail_remove={1})
    report = bulk_remove_from_all_lists(client, [1, 2, 3])

    assert report.succeeded == [2, 3]
    assert report.failed == [1]
    assert client.removed == [2, 3]
