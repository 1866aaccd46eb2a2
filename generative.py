"""
Client for the external generative-text service.

The service proposes a conflict-serializable reordering of a schedule and
discusses view serializability when the precedence graph has a cycle. Its
answers are passed through as-is; nothing here re-checks them.
"""

import logging

import requests

logger = logging.getLogger(__name__)

REORDER_PROMPT = """You are a database expert tasked with reordering transaction schedules to ensure conflict serializability.

Given the following transaction schedule, reorder the operations to create a conflict-serializable schedule.
Explain the reordering process and why the new schedule is conflict serializable.

Schedule: {schedule}

Respond with the reordered schedule and the explanation."""

DISCUSSION_PROMPT = """You are a database concurrency control expert.
The user has provided a transaction schedule that is NOT conflict serializable due to a detected cycle.
Schedule: {schedule}
Conflict Cycle Information: {conflict_cycle_info}

Explain the concept of view serializability briefly.
Compare it to conflict serializability (all conflict-serializable schedules are view-serializable, but not vice-versa).
Discuss whether the given schedule might be view serializable despite not being conflict serializable,
paying attention to blind writes. Focus on the factors rather than a definitive yes/no.
Output only the discussion text."""


class GenerativeServiceError(Exception):
    """The generative service could not produce a usable answer"""


class ScheduleAssistant:
    def __init__(self, endpoint, api_key=None, timeout=30.0, session=None):
        self.endpoint = endpoint.rstrip('/') if endpoint else None
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, flow, prompt, payload, fields):
        if not self.endpoint:
            raise GenerativeServiceError('Generative service is not configured')

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"

        url = f"{self.endpoint}/{flow}"
        try:
            response = self.session.post(
                url,
                json={'prompt': prompt, 'input': payload},
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Generative service request to {url} failed: {e}")
            raise GenerativeServiceError(f"Generative service request failed: {e}") from e
        except ValueError as e:
            raise GenerativeServiceError('Generative service returned invalid JSON') from e

        if not isinstance(data, dict):
            raise GenerativeServiceError('Generative service returned an unexpected response')
        missing = [name for name in fields if not isinstance(data.get(name), str)]
        if missing:
            raise GenerativeServiceError(f"Generative service response is missing: {', '.join(missing)}")

        return data

    def reorder_schedule(self, schedule):
        """Ask for a conflict-serializable reordering of the schedule"""
        data = self._post(
            'reorder',
            REORDER_PROMPT.format(schedule=schedule),
            {'schedule': schedule},
            ('reorderedSchedule', 'explanation')
        )
        return {
            'reordered_schedule': data['reorderedSchedule'],
            'explanation': data['explanation']
        }

    def discuss_view_serializability(self, schedule, conflict_cycle_info):
        data = self._post(
            'discuss',
            DISCUSSION_PROMPT.format(schedule=schedule, conflict_cycle_info=conflict_cycle_info),
            {'schedule': schedule, 'conflictCycleInfo': conflict_cycle_info},
            ('discussion',)
        )
        return {'discussion': data['discussion']}
