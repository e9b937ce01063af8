# Purpose: Local stand-in for the participant directory: client metadata and published key sets.
# Not for production use; intended only as a reference sandbox.

import argparse
import json
import os

from flask import Flask, abort, jsonify, send_from_directory
from werkzeug.security import safe_join

DEFAULT_PORT = 5021
BASE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "directory")


def create_directory_app(base_dir=BASE_DIR):
    app = Flask(__name__)

    @app.route('/clients/<client_id>')
    def client_details(client_id):
        """Client metadata as registered by keygen.py; carries the client's jwksUri."""
        registry_path = os.path.join(base_dir, "clients.json")
        if not os.path.isfile(registry_path):
            return abort(404, description="No clients registered.")
        with open(registry_path, "r") as f:
            clients = json.load(f)
        if client_id not in clients:
            return abort(404, description="Client not found.")
        return jsonify(clients[client_id])

    @app.route('/<organisation_id>/<filename>')
    def serve_keyset(organisation_id, filename):
        """Serves an organisation's key set. Only .jwks files are exposed."""
        _, ext = os.path.splitext(filename)
        if ext != '.jwks':
            return abort(403, description="Access to this file type is restricted.")

        org_dir = safe_join(base_dir, organisation_id)
        if org_dir is None or not os.path.isfile(os.path.join(org_dir, filename)):
            return abort(404, description="File not found.")

        return send_from_directory(org_dir, filename, mimetype="application/json")

    return app


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Sandbox participant directory")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--dir", default=BASE_DIR, help="Directory written by keygen.py.")
    args = parser.parse_args()

    print(f"OB_DIRECTORY: Serving {args.dir} on port {args.port}...")
    create_directory_app(args.dir).run(host='127.0.0.1', port=args.port)
