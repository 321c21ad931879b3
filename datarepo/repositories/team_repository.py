"""Team repository."""

from datarepo.models import Team
from datarepo.repositories.base_repository import BaseRepository
from datarepo.repositories.derived import derived_query


class TeamRepository(BaseRepository[Team]):
    """Repository for teams."""

    model = Team

    find_one_by_name = derived_query()
    find_by_name_in = derived_query()
    exists_by_name = derived_query()

    # members arrive in the same statement as their team
    stream_by_name_in = derived_query(fetch=("members",))
