REDIS_USER_KEY = "chat:user:{user_id}" # JSON user document
REDIS_GROUP_KEY = "chat:group:{group_id}" # JSON group document
REDIS_USER_GROUPS_KEY = "chat:user:{user_id}:groups" # set of group ids the user is a member of
REDIS_USER_PEERS_KEY = "chat:user:{user_id}:peers" # zset of private chat peers scored by last message time
REDIS_MESSAGE_KEY = "chat:message:{message_id}" # JSON message document
REDIS_CONVERSATION_KEY = "chat:conversation:{address}" # zset of message ids scored by created_at
REDIS_BLACKLIST_KEY = "blacklist:{token}" # revoked bearer tokens, TTL = remaining token lifetime
REDIS_ROOM_CHANNEL = "room:channel:{address}" # pub/sub channel for a room address

# **Conversation index**
# - Private conversations are keyed by the private room address (`<idA>-<idB>`, sorted)
# - Group conversations by `group:<groupId>`
# - The zset is the only way history reads enumerate messages; documents are never scanned
# - Every message document change goes through WATCH/MULTI on its `chat:message:` key
