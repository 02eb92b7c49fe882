"""Storage backends for payloads, signatures and certificates: task run annotations, object stores, document collections and OCI registries."""