"""Role and policy based authorization: resources, rules, policies and queries."""