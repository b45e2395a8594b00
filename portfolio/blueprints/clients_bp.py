"""
AI Use-Case Portfolio Service
Clients Blueprint — tenancy records.

Endpoints:
    GET  /api/clients                         — List clients (+ engagements)
    POST /api/clients                         — Create client
    POST /api/clients/<id>/engagements        — Create engagement
    GET  /api/engagements/<id>                — Engagement detail
    PUT  /api/engagements/<id>                — Update (409 while locked)
"""

import logging

from flask import Blueprint, jsonify

from portfolio.blueprints import json_body
from portfolio.models.client import Engagement
from portfolio.services import client_service
from portfolio.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

clients_bp = Blueprint("clients", __name__, url_prefix="/api")


@clients_bp.route("/clients", methods=["GET"])
def list_clients():
    clients = client_service.list_clients()
    return jsonify([c.to_dict(include_children=True) for c in clients]), 200


@clients_bp.route("/clients", methods=["POST"])
def create_client():
    client = client_service.create_client(json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(client.to_dict()), 201


@clients_bp.route("/clients/<int:client_id>/engagements", methods=["POST"])
def create_engagement(client_id):
    engagement = client_service.create_engagement(client_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(engagement.to_dict()), 201


@clients_bp.route("/engagements/<int:engagement_id>", methods=["GET"])
def get_engagement(engagement_id):
    engagement, err = get_or_404(Engagement, engagement_id)
    if err:
        return err
    return jsonify(engagement.to_dict()), 200


@clients_bp.route("/engagements/<int:engagement_id>", methods=["PUT"])
def update_engagement(engagement_id):
    engagement, err = get_or_404(Engagement, engagement_id)
    if err:
        return err
    client_service.update_engagement(engagement, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(engagement.to_dict()), 200
