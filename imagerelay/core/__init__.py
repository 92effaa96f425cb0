"""
Core business logic for image relaying.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or sqlite3. The orchestrator talks to the metadata store and object
storage through the interfaces they expose, so both can be swapped
for test doubles.
"""
